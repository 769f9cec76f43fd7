"""
Token lifecycle: reuse the cached access token, refresh it, or log in with the password grant.

Failed attempts are retried up to max_nr_of_auth_tries within one ensure_valid_token() call.
When refreshing keeps failing, the token cache is deleted once per TokenManager and a fresh
password login is tried before giving up, so an invalid refresh token cannot wedge the client.
"""
import logging
from dataclasses import dataclass

import httpx

from dynamics_client.config import LOGIN_AUTHORITY, MAX_NR_OF_AUTH_TRIES
from dynamics_client.credentials import Credentials
from dynamics_client.errors import AuthError
from dynamics_client.token_store import TokenRecord, TokenStore

logger = logging.getLogger(__name__)

GRANT_PASSWORD = "password"
GRANT_REFRESH_TOKEN = "refresh_token"


@dataclass
class AuthSession:
    """Attempt bookkeeping for one logical ensure_valid_token() call."""

    max_attempts: int
    attempts: int = 0

    def start_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def reset(self) -> None:
        self.attempts = 0


class TokenManager:
    def __init__(
        self,
        credentials: Credentials,
        store: TokenStore,
        http_client: httpx.Client,
        *,
        max_nr_of_auth_tries: int = MAX_NR_OF_AUTH_TRIES,
        login_authority: str = LOGIN_AUTHORITY,
    ):
        if max_nr_of_auth_tries < 1:
            raise ValueError("max_nr_of_auth_tries must be at least 1")
        self.credentials = credentials
        self.store = store
        self.http_client = http_client
        self.max_nr_of_auth_tries = max_nr_of_auth_tries
        self.login_authority = login_authority.rstrip("/")
        self.token: TokenRecord | None = None
        self.last_http_status: int | None = None
        # One-shot escape: delete the cache and log in again after refresh is exhausted
        self.tried_login_after_refresh_fail = False
        self.session: AuthSession | None = None

    @property
    def token_url(self) -> str:
        return f"{self.login_authority}/{self.credentials.tenant}/oauth2/token"

    @property
    def access_token(self) -> str | None:
        return self.token.access_token if self.token else None

    def ensure_valid_token(self, force_refresh: bool = False) -> None:
        """
        Make sure a usable access token is loaded.
        force_refresh treats an unexpired cached token as expired (used after a 401).
        Raises AuthError when authentication cannot be established.
        """
        session = AuthSession(max_attempts=self.max_nr_of_auth_tries)
        self.session = session
        while True:
            attempt = session.start_attempt()
            cached = self.store.load()
            if cached is not None and not force_refresh and not cached.is_expired():
                logger.debug("Using cached access token (expires_on=%s)", cached.expires_on)
                self.token = cached
                return

            grant = GRANT_REFRESH_TOKEN if cached is not None else GRANT_PASSWORD
            form = self._refresh_form(cached) if cached is not None else self._password_form()
            try:
                response = self.http_client.post(
                    self.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
            except httpx.TransportError as e:
                logger.warning("%s grant attempt %s/%s failed: %s", grant, attempt, session.max_attempts, e)
                if session.exhausted:
                    raise AuthError(self._exhausted_message(grant, f"transport error: '{e}'", attempt), attempts=attempt) from e
                continue

            self.last_http_status = response.status_code
            payload, problem = self._read_token_response(response)
            if problem is None:
                record = TokenRecord.from_token_response(payload)
                self.store.save(record)
                session.reset()
                self.token = self.store.load()
                logger.info("Obtained access token via %s grant (expires_on=%s)", grant, record.expires_on)
                return

            logger.warning(
                "%s grant attempt %s/%s rejected (HTTP %s): %s",
                grant, attempt, session.max_attempts, response.status_code, problem,
            )
            if not session.exhausted:
                continue
            if grant == GRANT_REFRESH_TOKEN and not self.tried_login_after_refresh_fail:
                self.tried_login_after_refresh_fail = True
                self.store.delete()
                logger.info("Refresh token exhausted; deleted token cache and retrying with password login")
                continue
            raise AuthError(
                self._exhausted_message(grant, f"HTTP status code: '{response.status_code}' Body: '{response.text}'", attempt),
                attempts=attempt,
                http_status=response.status_code,
            )

    def _password_form(self) -> dict:
        return {
            "grant_type": GRANT_PASSWORD,
            "client_id": self.credentials.client_id,
            "resource": self.credentials.resource,
            "username": self.credentials.username,
            "password": self.credentials.password,
        }

    def _refresh_form(self, record: TokenRecord) -> dict:
        return {
            "grant_type": GRANT_REFRESH_TOKEN,
            "client_id": self.credentials.client_id,
            "resource": self.credentials.resource,
            "refresh_token": record.refresh_token,
        }

    @staticmethod
    def _read_token_response(response: httpx.Response) -> tuple[dict | None, str | None]:
        """Return (payload, None) for a usable token response, else (None, reason)."""
        try:
            payload = response.json()
        except ValueError:
            return None, "response body is not JSON"
        if not isinstance(payload, dict):
            return None, "response body is not a JSON object"
        if "error" in payload:
            return None, str(payload.get("error_description") or payload["error"])
        try:
            TokenRecord.from_token_response(payload)
        except AuthError as e:
            return None, e.message
        return payload, None

    @staticmethod
    def _exhausted_message(grant: str, detail: str, attempts: int) -> str:
        if grant == GRANT_REFRESH_TOKEN:
            return f"Failed to get access token, refresh token exhausted. {detail} Tried '{attempts}' times"
        return f"Failed to get access token, check supplied auth params. {detail} Tried '{attempts}' times"
