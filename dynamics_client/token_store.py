"""
Persisted token cache: access_token, refresh_token, expires_on (unix timestamp).
The file is shared between processes, so writes go to a temp file that is then renamed over the cache.
"""
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from dynamics_client.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_FIELDS = ("access_token", "refresh_token", "expires_on")


@dataclass(frozen=True)
class TokenRecord:
    access_token: str
    refresh_token: str
    expires_on: int

    def is_expired(self, now: float | None = None) -> bool:
        """True once expires_on is in the past. A token expiring this very second is still used."""
        if now is None:
            now = time.time()
        return self.expires_on < now

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_on": self.expires_on,
        }

    @classmethod
    def from_dict(cls, data: dict, source: str = "token data") -> "TokenRecord":
        """Validate the cache shape. Raises AuthError naming the missing or empty field."""
        if not isinstance(data, dict):
            raise AuthError(f"Token data in '{source}' is not a JSON object")
        for name in TOKEN_FIELDS:
            value = data.get(name)
            if value is None or value == "":
                raise AuthError(f"Couldn't find '{name}' in '{source}'")
        try:
            expires_on = int(float(data["expires_on"]))
        except (TypeError, ValueError):
            raise AuthError(f"Invalid 'expires_on' value {data['expires_on']!r} in '{source}'")
        return cls(
            access_token=str(data["access_token"]),
            refresh_token=str(data["refresh_token"]),
            expires_on=expires_on,
        )

    @classmethod
    def from_token_response(cls, payload: dict, now: float | None = None) -> "TokenRecord":
        """
        Build a record from an Azure AD token response.
        expires_on arrives as a numeric string; when it is absent, expires_in seconds from now is used.
        """
        data = dict(payload)
        if data.get("expires_on") in (None, "") and data.get("expires_in") not in (None, ""):
            try:
                expires_in = int(float(data["expires_in"]))
            except (TypeError, ValueError):
                raise AuthError(f"Invalid 'expires_in' value {data['expires_in']!r} in token response")
            data["expires_on"] = int(now if now is not None else time.time()) + expires_in
        return cls.from_dict(data, source="token response")


class TokenStore:
    """Reads and writes one TokenRecord as JSON at a fixed path. No business logic."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> TokenRecord | None:
        """Return the cached record, None if there is no cache file. Unreadable or malformed -> AuthError."""
        if not self.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise AuthError(
                f"Couldn't get contents of file '{self.path}', check permissions and that the file exists: {e}"
            ) from e
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise AuthError(f"Couldn't parse json in token file '{self.path}': {e}") from e
        return TokenRecord.from_dict(data, source=str(self.path))

    def save(self, record: TokenRecord) -> None:
        """Write atomically: temp file in the same directory, then os.replace."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record.to_dict(), f)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise AuthError(f"Couldn't store token data to file '{self.path}', check permissions: {e}") from e
        logger.debug("Stored token data in %s", self.path)

    def delete(self) -> bool:
        """Remove the cache file. Returns False if there was nothing to remove."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Deleted token data file %s", self.path)
        return True
