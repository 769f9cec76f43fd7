"""
DynamicsClient: authenticated access to a Dynamics 365 OData API with the OAuth2 password grant.

Every operation first makes sure a valid access token is loaded (cached, refreshed, or obtained by
logging in) and then runs a single request. Errors surface as ConfigError, AuthError or ApiError.

    with DynamicsClient("dynamics_auth.json") as client:
        page = client.get("Customers", "$top=10")
        created = client.post("Customers", {"CustomerAccount": "US-001"})
"""
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx

from dynamics_client.auth import TokenManager
from dynamics_client.batch import BatchExecutor
from dynamics_client.config import (
    LOGIN_AUTHORITY,
    MAX_NR_OF_AUTH_TRIES,
    REQUEST_TIMEOUT,
    TOKEN_DATA_FILENAME,
    VALID_HTTP_STATUS_CODES,
)
from dynamics_client.credentials import Credentials, load_credentials
from dynamics_client.executor import RequestEnvelope, RequestExecutor, format_key
from dynamics_client.token_store import TokenStore

logger = logging.getLogger(__name__)


def _log_request(request: httpx.Request) -> None:
    logger.debug("Request: %s %s", request.method, request.url)


def _log_response(response: httpx.Response) -> None:
    logger.debug("Response: %s %s %s", response.status_code, response.request.method, response.request.url)


class DynamicsClient:
    def __init__(
        self,
        credentials: Mapping | str | Path | Credentials | None = None,
        *,
        token_data_filename: str | Path | None = None,
        max_nr_of_auth_tries: int | None = None,
        valid_http_status_codes=None,
        debug: bool = False,
        timeout: float | None = None,
        login_authority: str | None = None,
        api_base_url: str | None = None,
        retry_on_unauthorized: bool = False,
        http_client: httpx.Client | None = None,
        authenticate: bool = True,
    ):
        self.credentials = load_credentials(credentials)
        self.debug = debug
        self.api_base_url = (api_base_url or f"{self.credentials.resource.rstrip('/')}/data").rstrip("/")

        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = httpx.Client(timeout=timeout if timeout is not None else REQUEST_TIMEOUT)
        if debug:
            # hooks stay registered on a shared client, add them once
            if _log_request not in http_client.event_hooks["request"]:
                http_client.event_hooks["request"].append(_log_request)
            if _log_response not in http_client.event_hooks["response"]:
                http_client.event_hooks["response"].append(_log_response)
        self.http_client = http_client

        if max_nr_of_auth_tries is None:
            max_nr_of_auth_tries = MAX_NR_OF_AUTH_TRIES
        if valid_http_status_codes is None:
            valid_http_status_codes = VALID_HTTP_STATUS_CODES

        try:
            self.token_store = TokenStore(token_data_filename or TOKEN_DATA_FILENAME)
            self.token_manager = TokenManager(
                self.credentials,
                self.token_store,
                http_client,
                max_nr_of_auth_tries=max_nr_of_auth_tries,
                login_authority=login_authority or LOGIN_AUTHORITY,
            )
            self.executor = RequestExecutor(
                http_client,
                self.token_manager,
                self.api_base_url,
                valid_http_status_codes=valid_http_status_codes,
                retry_on_unauthorized=retry_on_unauthorized,
            )
            self.batch_executor = BatchExecutor(
                http_client, self.token_manager, self.api_base_url, self.credentials.resource
            )
            self._last_component = None

            if authenticate:
                self.token_manager.ensure_valid_token()
        except BaseException:
            self.close()
            raise

    def __enter__(self) -> "DynamicsClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            self.http_client.close()

    @property
    def access_token(self) -> str | None:
        return self.token_manager.access_token

    @property
    def http_response_status_code(self) -> int | None:
        """Status of the most recent API or batch call (embedded status for batches)."""
        if self._last_component is None:
            return self.token_manager.last_http_status
        return self._last_component.last_http_status

    def request(self, method: str, path: str, data: Any = None, query_params: str | Mapping | None = ""):
        """Generic entry point; the verb methods below delegate here."""
        RequestExecutor.validate_method(method)
        self.token_manager.ensure_valid_token()
        self._last_component = self.executor
        return self.executor.execute(method, path, data, query_params)

    def get(self, path: str, query_params: str | Mapping | None = "") -> RequestEnvelope:
        return self.request("GET", path, None, query_params)

    def post(self, path: str, data: Any):
        return self.request("POST", path, data)

    def put(self, path: str, data: Any, id: Any):
        return self.request("PUT", path + format_key(id), data)

    def patch(self, path: str, data: Any, id: Any):
        return self.request("PATCH", path + format_key(id), data)

    def delete(self, path: str, id: Any):
        return self.request("DELETE", path + format_key(id))

    def batch(self, entity: str, data: Any):
        """Create one entity through the /$batch endpoint."""
        self.token_manager.ensure_valid_token()
        self._last_component = self.batch_executor
        return self.batch_executor.batch_create(entity, data)
