"""
Dynamics client configuration defaults.
Every value can be overridden from the environment or per client instance; no secrets here.
"""
import os
from pathlib import Path

# Azure AD authority; token endpoint is {authority}/{tenant}/oauth2/token
LOGIN_AUTHORITY = os.environ.get("DYNAMICS_LOGIN_AUTHORITY", "https://login.windows.net").rstrip("/")

# Credentials file used when the client is constructed without credentials
AUTH_DATA_FILENAME = os.environ.get("DYNAMICS_AUTH_FILE", "dynamics_auth.json")

# Where the token cache lives (access_token, refresh_token, expires_on)
TOKEN_DATA_FILENAME = os.environ.get(
    "DYNAMICS_TOKEN_FILE",
    str(Path.home() / ".dynamics_client" / "token_data.json"),
)

# How many times authentication is attempted before raising
MAX_NR_OF_AUTH_TRIES = int(os.environ.get("DYNAMICS_MAX_AUTH_TRIES", "4"))

# HTTP timeout (seconds) for token and API calls
REQUEST_TIMEOUT = float(os.environ.get("DYNAMICS_REQUEST_TIMEOUT", "30"))

# Statuses that count as a successful API response
VALID_HTTP_STATUS_CODES = frozenset({200, 201, 202, 203, 204, 205})

# Keys every credentials mapping must contain
REQUIRED_AUTH_FIELDS = ("tenant", "client_id", "username", "password", "resource")

SUPPORTED_METHODS = ("GET", "POST", "PATCH", "PUT", "DELETE")
