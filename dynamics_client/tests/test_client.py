"""Tests for DynamicsClient construction: owned transport cleanup, debug hooks, explicit options."""
import httpx
import pytest

from dynamics_client import client as client_module
from dynamics_client.client import DynamicsClient
from dynamics_client.errors import ApiError, AuthError


@pytest.fixture
def owned_http_client(monkeypatch, make_http_client):
    """Make DynamicsClient build this mock client instead of a real httpx.Client."""

    def _install(handler):
        http_client = make_http_client(handler)
        monkeypatch.setattr(client_module.httpx, "Client", lambda **kwargs: http_client)
        return http_client

    return _install


def test_failed_login_closes_owned_http_client(credentials, token_file, owned_http_client, recorder):
    http_client = owned_http_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    with pytest.raises(AuthError):
        DynamicsClient(credentials, token_data_filename=token_file)
    assert len(recorder) == 4
    assert http_client.is_closed


def test_invalid_max_tries_closes_owned_http_client(credentials, token_file, owned_http_client, recorder):
    http_client = owned_http_client(lambda request: httpx.Response(500))
    with pytest.raises(ValueError):
        DynamicsClient(credentials, token_data_filename=token_file, max_nr_of_auth_tries=0)
    assert recorder == []
    assert http_client.is_closed


def test_failed_login_leaves_injected_client_open(credentials, token_file, make_http_client):
    http_client = make_http_client(lambda request: httpx.Response(400, json={"error": "invalid_grant"}))
    with pytest.raises(AuthError):
        DynamicsClient(credentials, token_data_filename=token_file, http_client=http_client)
    assert not http_client.is_closed


def test_debug_hooks_added_once_per_http_client(credentials, token_file, make_http_client):
    http_client = make_http_client(lambda request: httpx.Response(200, text="0"))
    for _ in range(3):
        DynamicsClient(
            credentials, token_data_filename=token_file, http_client=http_client, debug=True, authenticate=False
        )
    assert http_client.event_hooks["request"] == [client_module._log_request]
    assert http_client.event_hooks["response"] == [client_module._log_response]


def test_explicit_empty_status_set_is_kept(credentials, write_token, token_file, make_http_client):
    write_token(expires_in=600)
    http_client = make_http_client(lambda request: httpx.Response(200, json={"Id": 1}))
    client = DynamicsClient(
        credentials, token_data_filename=token_file, http_client=http_client, valid_http_status_codes=set()
    )
    with pytest.raises(ApiError) as exc_info:
        client.post("accounts", {"Name": "x"})
    assert exc_info.value.http_status == 200
