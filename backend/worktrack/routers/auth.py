from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ClientActor, StaffActor
from worktrack.core.deps import get_current_actor
from worktrack.core.logging import security_event
from worktrack.core.security import create_access_token
from worktrack.db.session import get_db
from worktrack.models.client import Client
from worktrack.models.enums import ActorType
from worktrack.models.user import User
from worktrack.schemas.auth import ActorRead, ClientLogin, Token
from worktrack.services.accounts import authenticate_client, authenticate_staff

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=Token)
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
) -> Token:
    user = authenticate_staff(db, form_data.username, form_data.password)
    if user is None:
        security_event("login_failed", request, actor=None)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect email or password")
    if not user.is_active:
        security_event("login_inactive", request, actor=f"staff:{user.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User is inactive")

    token = create_access_token({"sub": f"staff:{user.id}", "role": user.role.value})
    security_event("login_succeeded", request, actor=f"staff:{user.id}")
    return Token(access_token=token, actor_type=ActorType.STAFF)


@router.post("/client-login", response_model=Token)
def client_login(payload: ClientLogin, request: Request, db: Session = Depends(get_db)) -> Token:
    client = authenticate_client(db, payload.id_number, payload.password)
    if client is None:
        security_event("client_login_failed", request, actor=None)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect ID number or password")
    if not client.is_active:
        security_event("client_login_inactive", request, actor=f"client:{client.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Client is inactive")

    token = create_access_token({"sub": f"client:{client.id}"})
    security_event("client_login_succeeded", request, actor=f"client:{client.id}")
    return Token(access_token=token, actor_type=ActorType.CLIENT)


@router.get("/me", response_model=ActorRead)
def read_me(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActorRead:
    match actor:
        case ClientActor():
            client = db.get(Client, actor.client_id)
            return ActorRead(actor_type=ActorType.CLIENT, id=client.id, full_name=client.full_name)
        case StaffActor():
            user = db.get(User, actor.user_id)
            return ActorRead(actor_type=ActorType.STAFF, id=user.id, full_name=user.full_name, role=user.role)
