"""Resolve the bearer token on a request into a ``ClientActor`` or ``StaffActor``."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ClientActor, StaffActor, parse_subject
from worktrack.core.logging import security_event
from worktrack.core.security import decode_token
from worktrack.db.session import get_db
from worktrack.models.client import Client
from worktrack.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_actor(
    request: Request,
    token: str = Security(oauth2_scheme),
    db: Session = Depends(get_db),
) -> Actor:
    try:
        kind, entity_id = parse_subject(decode_token(token).get("sub") or "")
    except (JWTError, ValueError, TypeError):
        security_event("token_rejected", request, actor=None)
        raise _unauthorized()

    subject = f"{kind}:{entity_id}"
    # Deactivation takes effect on the next request, not at token expiry.
    row = db.get(Client if kind == "client" else User, entity_id)
    if row is None or not row.is_active:
        security_event("token_actor_unavailable", request, actor=subject)
        raise _unauthorized()

    if kind == "client":
        return ClientActor(client_id=row.id)
    return StaffActor(user_id=row.id, role=row.role)
