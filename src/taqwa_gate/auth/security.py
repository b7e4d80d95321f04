"""
Identity Resolution

Turns an inbound request into an `Identity`:

1. A bearer JWT, when `jwt_secret` is configured, is verified with PyJWT and
   its `sub` claim becomes the identity. A token that fails verification is a
   401; it never silently degrades to the anonymous fallback.
2. Otherwise the client address (first `X-Forwarded-For` hop when present).
3. Otherwise `anonymous`.
"""

from __future__ import annotations

import logging
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import ValidationError

from ..config import settings
from .models import Identity

logger = logging.getLogger("taqwa.auth")


# ---------------------------------------------------------------------
# Security Scheme
# ---------------------------------------------------------------------

security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------

def _decode_token(token: str) -> dict:
    """
    Decode and validate an app-issued JWT.

    Raises
    ------
    jwt.InvalidTokenError subclasses, which the dependency converts to 401.
    """
    return jwt.decode(
        token,
        settings.jwt_secret.get_secret_value(),
        algorithms=[settings.JWT_ALGO],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={"require": ["iss", "aud", "exp", "sub"]},
    )


def _client_address(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return None


# ---------------------------------------------------------------------
# Public dependency
# ---------------------------------------------------------------------

def resolve_identity(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """
    FastAPI dependency resolving the caller identity.

    Raises
    ------
    HTTPException(401) for an invalid, expired or unusable token.
    """
    if creds is not None and settings.jwt_secret is not None:
        try:
            payload = _decode_token(creds.credentials)
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired.",
            )
        except jwt.InvalidAudienceError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token audience.",
            )
        except jwt.InvalidIssuerError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token issuer.",
            )
        except jwt.InvalidTokenError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or malformed token.",
            )

        try:
            return Identity.user(str(payload["sub"]))
        except (KeyError, ValidationError):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token carries an unusable 'sub' claim.",
            )

    address = _client_address(request)
    if address:
        try:
            return Identity.from_address(address)
        except ValidationError:
            logger.debug("Unusable client address %r, treating as anonymous", address)

    return Identity.anonymous()
