"""Simple JWT authentication helpers."""
from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, status

from src.core.config import settings

ADMIN_ROLE = "admin"


def require_auth(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Validate a bearer token and return decoded claims."""

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    if "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Subject missing in token",
        )
    return payload


def require_admin(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Like :func:`require_auth` but also demands the admin role."""

    claims = require_auth(authorization)
    if claims.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return claims


def create_access_token(subject: str, role: str = ADMIN_ROLE, **claims: Any) -> str:
    """Issue a signed token; used by operators and tests."""

    payload = {"sub": subject, "role": role, **claims}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
