"""
Credentials for the OAuth2 password grant.
Loaded from a mapping or a JSON file; all of tenant, client_id, username, password, resource are required.
"""
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dynamics_client.config import AUTH_DATA_FILENAME, REQUIRED_AUTH_FIELDS
from dynamics_client.errors import ConfigError


@dataclass(frozen=True)
class Credentials:
    tenant: str
    client_id: str
    username: str
    password: str = field(repr=False)
    resource: str

    @classmethod
    def from_mapping(cls, data: Mapping, source: str | None = None) -> "Credentials":
        """Build credentials from a mapping; ConfigError names the first missing key."""
        valid_keys = json.dumps(list(REQUIRED_AUTH_FIELDS))
        where = f"auth json file '{source}'" if source else "auth mapping"
        for key in REQUIRED_AUTH_FIELDS:
            if key not in data:
                raise ConfigError(f"Supplied {where} is missing key '{key}', valid keys are: {valid_keys}")
            if data[key] is None or data[key] == "":
                raise ConfigError(f"Supplied {where} has an empty value for key '{key}'")
        return cls(**{key: str(data[key]) for key in REQUIRED_AUTH_FIELDS})


def _read_auth_file(path: Path) -> Mapping:
    if not path.is_file():
        raise ConfigError(f"Couldn't find a file at the path: '{path}'")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Couldn't read auth file '{path}': {e}") from e
    except ValueError as e:
        raise ConfigError(f"Couldn't parse json at path '{path}': {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Auth file '{path}' must contain a JSON object")
    return data


def load_credentials(source: Mapping | str | Path | Credentials | None = None) -> Credentials:
    """
    Resolve credentials from a mapping, a path to a JSON file, or the default auth file.
    Raises ConfigError for any other type, an unreadable file, or missing keys.
    """
    if isinstance(source, Credentials):
        return source
    if source is None:
        source = AUTH_DATA_FILENAME
    if isinstance(source, (str, Path)):
        path = Path(source)
        return Credentials.from_mapping(_read_auth_file(path), source=str(path))
    if isinstance(source, Mapping):
        return Credentials.from_mapping(source)
    valid_keys = json.dumps(list(REQUIRED_AUTH_FIELDS))
    raise ConfigError(
        f"Invalid credentials of type {type(source).__name__}; expected a mapping with keys "
        f"{valid_keys} or the path to a json file with auth data"
    )
