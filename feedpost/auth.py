"""
Request authentication and caller identity.

Two concerns:
1. API key check - when AUTH_API_KEY is set, requests must carry a matching
   X-API-Key header; when it is empty, all requests are allowed (local dev)
2. Caller identity - the X-Owner-Key header names the owner whose feeds,
   articles and diagnostics a request works on
"""

import secrets
from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from .config import config

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)

OWNER_KEY_MAX_LENGTH = 200


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


def verify_api_key(api_key: str | None = Security(API_KEY_HEADER)) -> str:
    """
    Router dependency enforcing AUTH_API_KEY.

    Returns the presented key, or "" when no key is configured.

    Raises:
        HTTPException: 401 when a key is configured and the header is
            missing or does not match
    """
    expected = config.AUTH_API_KEY
    if not expected:
        return ""
    if not api_key:
        raise _unauthorized("Missing API key. Provide X-API-Key header.")
    if not secrets.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        raise _unauthorized("Invalid API key")
    return api_key


def get_owner_key(x_owner_key: str | None = Header(default=None)) -> str:
    """
    Resolve the calling owner from the X-Owner-Key header.

    Raises:
        HTTPException: 401 when the header is missing or blank, 400 when too long
    """
    owner_key = (x_owner_key or "").strip()
    if not owner_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing owner. Provide X-Owner-Key header.",
        )
    if len(owner_key) > OWNER_KEY_MAX_LENGTH:
        raise HTTPException(status_code=400, detail="X-Owner-Key header too long")
    return owner_key
