"""Auth middleware -- FastAPI dependencies for the engine and the current user.

Supports two ways of presenting an API key:
1. ``X-API-Key: <raw_key>`` header
2. ``Authorization: Bearer <raw_key>`` header
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from vigil.auth.models import User
from vigil.engine import SecurityEngine
from vigil.errors import AuthenticationError, PermissionDeniedError

# Shared engine instance
_engine: Optional[SecurityEngine] = None


def get_engine() -> SecurityEngine:
    """Return the singleton SecurityEngine (configured from ``VIGIL_CONFIG``)."""
    global _engine
    if _engine is None:
        _engine = SecurityEngine.from_config()
    return _engine


async def get_current_user(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    engine: SecurityEngine = Depends(get_engine),
) -> User:
    """FastAPI dependency that extracts and validates the current user.

    Raises ``401 Unauthorized`` if no valid credentials are provided and
    ``403 Forbidden`` for suspended accounts.
    """
    raw_key = x_api_key
    if not raw_key and authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token:
            raw_key = token

    try:
        return engine.authenticate(raw_key)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    except PermissionDeniedError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
