"""
Token endpoint (POST /{tenant}/oauth2/token) in the shape of Azure AD v1.
password and refresh_token grants only; refresh tokens rotate on every use.
"""
import logging
import secrets
import time

import jwt
from fastapi import APIRouter, Form
from fastapi.responses import JSONResponse

from dynamics_emulator.config import ACCESS_TOKEN_EXPIRES, CLIENT_ID, PASSWORD, RESOURCE, SIGNING_SECRET, TENANT, USERNAME

logger = logging.getLogger(__name__)
router = APIRouter()

# refresh_token -> username
_refresh_tokens: dict[str, str] = {}


def issuer() -> str:
    return f"https://sts.windows.net/{TENANT}/"


def reset() -> None:
    _refresh_tokens.clear()


def revoke_refresh_tokens() -> None:
    """Invalidate every outstanding refresh token (simulates an expired refresh token)."""
    _refresh_tokens.clear()


def _error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "error_description": description})


def _issue_tokens(username: str) -> dict:
    now = int(time.time())
    expires_on = now + ACCESS_TOKEN_EXPIRES
    access_token = jwt.encode(
        {"iss": issuer(), "aud": RESOURCE, "sub": username, "upn": username, "iat": now, "exp": expires_on},
        SIGNING_SECRET,
        algorithm="HS256",
    )
    refresh_token = secrets.token_urlsafe(48)
    _refresh_tokens[refresh_token] = username
    return {
        "token_type": "Bearer",
        "scope": "user_impersonation",
        "expires_in": str(ACCESS_TOKEN_EXPIRES),
        "ext_expires_in": str(ACCESS_TOKEN_EXPIRES),
        "expires_on": str(expires_on),
        "not_before": str(now),
        "resource": RESOURCE,
        "access_token": access_token,
        "refresh_token": refresh_token,
    }


@router.post("/{tenant}/oauth2/token")
def token(
    tenant: str,
    grant_type: str = Form(...),
    client_id: str = Form(...),
    resource: str | None = Form(None),
    username: str | None = Form(None),
    password: str | None = Form(None),
    refresh_token: str | None = Form(None),
):
    """
    password: exchange username/password for access_token + refresh_token.
    refresh_token: exchange a refresh token for new tokens; the old refresh token is revoked.
    """
    if tenant != TENANT:
        return _error("invalid_request", f"AADSTS90002: Tenant '{tenant}' not found.")
    if client_id != CLIENT_ID:
        return _error("unauthorized_client", f"AADSTS700016: Application '{client_id}' was not found.")
    if (resource or "").rstrip("/") != RESOURCE:
        return _error("invalid_resource", f"AADSTS500011: The resource '{resource}' was not found.")

    if grant_type == "password":
        if not username or not password:
            return _error("invalid_request", "AADSTS900144: username and password are required.")
        if username != USERNAME or password != PASSWORD:
            logger.info("password grant: invalid credentials for %s", username)
            return _error("invalid_grant", "AADSTS50126: Invalid username or password.")
        logger.info("password grant: tokens issued for %s", username)
        return _issue_tokens(username)

    if grant_type == "refresh_token":
        if not refresh_token:
            return _error("invalid_request", "AADSTS900144: refresh_token is required.")
        owner = _refresh_tokens.pop(refresh_token, None)
        if owner is None:
            return _error("invalid_grant", "AADSTS70008: The refresh token has expired or is invalid.")
        logger.info("refresh_token grant: tokens issued for %s (refresh token rotated)", owner)
        return _issue_tokens(owner)

    return _error("unsupported_grant_type", "AADSTS70003: Only password and refresh_token grants are supported.")
