"""
Bearer-token validation (HS256 JWT).

Tokens are issued elsewhere; this service only validates them.  The
payload carries ``sub`` (user id) and ``role``.  ``create_access_token``
exists for tooling and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from dispatch.config import settings
from dispatch.domain.enums import Role
from dispatch.domain.errors import Forbidden, Unauthorized

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    user_id: int
    role: Role


def create_access_token(
    user_id: int, role: Role, expires_in: Optional[timedelta] = None
) -> str:
    """Sign a JWT with the configured secret."""
    claims: dict[str, Any] = {"sub": str(user_id), "role": Role(role).value}
    if expires_in is not None:
        claims["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Principal:
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    try:
        return Principal(user_id=int(payload["sub"]), role=Role(payload["role"]))
    except (KeyError, TypeError, ValueError):
        raise Unauthorized("Invalid token payload")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    if credentials is None:
        raise Unauthorized("Missing Bearer token")
    return decode_token(credentials.credentials)


async def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    if principal.role != Role.ADMIN:
        raise Forbidden("Admin access required")
    return principal
