from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from worktrack.models.enums import ActorType, Role


class ClientLogin(BaseModel):
    id_number: str
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    actor_type: ActorType


class ActorRead(BaseModel):
    actor_type: ActorType
    id: int
    full_name: str
    role: Optional[Role] = None
