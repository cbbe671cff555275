"""Password hashing and bearer tokens.

A token's ``sub`` is ``client:{id}`` or ``staff:{id}``. Staff tokens also
carry ``role`` for log lines; authorisation always re-reads the user row.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from jose import jwt
from passlib.context import CryptContext

from worktrack.core.settings import settings
from worktrack.db.base import utcnow

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    # Imported clients may carry a placeholder instead of a bcrypt hash.
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def token_lifetime() -> timedelta:
    return timedelta(minutes=max(settings.access_token_expire_minutes, 1))


def create_access_token(claims: Mapping[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    if not claims.get("sub"):
        raise ValueError("Access tokens need a subject")
    issued = utcnow()
    body = dict(claims)
    body["iat"] = issued
    body["exp"] = issued + (expires_delta or token_lifetime())
    return jwt.encode(body, settings.jwt_secret, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.algorithm],
        options={"require_exp": True, "require_sub": True},
    )
