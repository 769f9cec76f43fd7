"""
Shared fixtures for dynamics_client tests. HTTP is faked with httpx.MockTransport;
token files live in tmp_path so tests never touch the real cache.
"""
import json
import time
from urllib.parse import parse_qs

import httpx
import pytest

RESOURCE = "https://contoso.operations.dynamics.com"
TOKEN_URL = "https://login.windows.net/contoso.onmicrosoft.com/oauth2/token"


@pytest.fixture
def credentials():
    return {
        "tenant": "contoso.onmicrosoft.com",
        "client_id": "client-123",
        "username": "admin@contoso.onmicrosoft.com",
        "password": "p@ss word&more",
        "resource": RESOURCE,
    }


@pytest.fixture
def token_file(tmp_path):
    return tmp_path / "cache" / "token_data.json"


@pytest.fixture
def write_token(token_file):
    """Write a token cache file; expires_in is relative to now (negative = expired)."""

    def _write(expires_in=3600, access_token="cached-at", refresh_token="cached-rt"):
        token_file.parent.mkdir(parents=True, exist_ok=True)
        token_file.write_text(
            json.dumps(
                {
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "expires_on": int(time.time()) + expires_in,
                }
            )
        )
        return token_file

    return _write


@pytest.fixture
def token_payload():
    """Azure AD style token response body."""

    def _payload(access_token="new-at", refresh_token="new-rt", expires_in=3600):
        return {
            "token_type": "Bearer",
            "expires_in": str(expires_in),
            "expires_on": str(int(time.time()) + expires_in),
            "resource": RESOURCE,
            "access_token": access_token,
            "refresh_token": refresh_token,
        }

    return _payload


@pytest.fixture
def recorder():
    """Collects every request a MockTransport handler sees."""
    return []


@pytest.fixture
def make_http_client(recorder):
    """Build an httpx.Client whose requests are answered by handler(request) and recorded."""
    clients = []

    def _make(handler):
        def _record(request: httpx.Request) -> httpx.Response:
            recorder.append(request)
            return handler(request)

        client = httpx.Client(transport=httpx.MockTransport(_record))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


def form_of(request: httpx.Request) -> dict:
    """Decode a form-encoded request body into {name: value}."""
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


@pytest.fixture
def read_form():
    return form_of
