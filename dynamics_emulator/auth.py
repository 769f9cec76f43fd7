"""
Bearer token validation for the emulated /data service.
Tokens are the HS256 JWTs issued by token_endpoint; aud must be the configured resource.
"""
import logging
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dynamics_emulator.config import RESOURCE, SIGNING_SECRET
from dynamics_emulator.token_endpoint import issuer

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthorized(description: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "invalid_token", "error_description": description},
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_access_token(token: str) -> dict:
    """Decode and validate the token; 401 on any failure."""
    try:
        return jwt.decode(
            token,
            SIGNING_SECRET,
            algorithms=["HS256"],
            audience=RESOURCE,
            issuer=issuer(),
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidAudienceError:
        raise _unauthorized("Invalid audience")
    except jwt.PyJWTError as e:
        logger.debug("JWT verification failed: %s", e)
        raise _unauthorized("Token verification failed")


def get_claims(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict:
    """Dependency: valid Bearer token -> decoded claims."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _unauthorized("Authorization header missing")
    return verify_access_token(credentials.credentials)


RequireToken = Depends(get_claims)
