"""Authenticated actors.

Every request is made either by a monitored client (mobile app) or by a
staff member. Each kind carries only the fields it can legally have, and
access checks dispatch over the closed union with ``assert_never``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union, assert_never

from worktrack.core.errors import PermissionDenied
from worktrack.models.enums import ActorType, Role


@dataclass(frozen=True)
class ClientActor:
    client_id: int

    @property
    def subject(self) -> str:
        return f"client:{self.client_id}"


@dataclass(frozen=True)
class StaffActor:
    user_id: int
    role: Role

    @property
    def subject(self) -> str:
        return f"staff:{self.user_id}"

    @property
    def sees_all_clients(self) -> bool:
        return self.role in (Role.SUPERVISOR, Role.ADMIN)


Actor = Union[ClientActor, StaffActor]


def actor_type(actor: Actor) -> ActorType:
    match actor:
        case ClientActor():
            return ActorType.CLIENT
        case StaffActor():
            return ActorType.STAFF
        case _:
            assert_never(actor)


def actor_id(actor: Actor) -> int:
    match actor:
        case ClientActor(client_id=client_id):
            return client_id
        case StaffActor(user_id=user_id):
            return user_id
        case _:
            assert_never(actor)


def parse_subject(subject: str) -> tuple[str, int]:
    kind, _, raw_id = (subject or "").partition(":")
    if kind not in {"client", "staff"} or not raw_id:
        raise ValueError(f"Unrecognised token subject: {subject!r}")
    return kind, int(raw_id)


def can_access_client(actor: Actor, *, client_id: int, officer_id: int | None) -> bool:
    match actor:
        case ClientActor():
            return actor.client_id == client_id
        case StaffActor():
            return actor.sees_all_clients or officer_id == actor.user_id
        case _:
            assert_never(actor)


def ensure_client_access(actor: Actor, *, client_id: int, officer_id: int | None) -> None:
    if not can_access_client(actor, client_id=client_id, officer_id=officer_id):
        raise PermissionDenied("Not authorised for this client")


def require_client(actor: Actor) -> ClientActor:
    if isinstance(actor, ClientActor):
        return actor
    raise PermissionDenied("Only the monitored client may perform this action")


def require_staff(actor: Actor) -> StaffActor:
    if isinstance(actor, StaffActor):
        return actor
    raise PermissionDenied("Staff access required")
