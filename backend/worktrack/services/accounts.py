from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from worktrack.core.security import get_password_hash, verify_password
from worktrack.models.client import Client
from worktrack.models.enums import Role
from worktrack.models.user import User


def new_staff_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str,
    role: Role = Role.OFFICER,
) -> User:
    user = User(
        email=email.lower(),
        hashed_password=get_password_hash(password),
        full_name=full_name,
        role=role,
        is_active=True,
    )
    db.add(user)
    db.flush()
    return user


def new_client(
    db: Session,
    *,
    full_name: str,
    id_number: str,
    password: str,
    officer_id: Optional[int] = None,
    work_location_id: Optional[int] = None,
    assigned_hours: float = 0,
    phone: Optional[str] = None,
) -> Client:
    client = Client(
        full_name=full_name,
        id_number=id_number,
        phone=phone,
        hashed_password=get_password_hash(password),
        officer_id=officer_id,
        work_location_id=work_location_id,
        assigned_hours=assigned_hours,
        completed_hours=0,
        is_active=True,
    )
    db.add(client)
    db.flush()
    return client


def authenticate_staff(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email.lower()).first()
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


def authenticate_client(db: Session, id_number: str, password: str) -> Optional[Client]:
    client = db.query(Client).filter(Client.id_number == id_number).first()
    if client is None or not verify_password(password, client.hashed_password):
        return None
    return client
