from __future__ import annotations

from typing import List

from sqlalchemy import Boolean, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, IDMixin, TimestampMixin
from worktrack.models.enums import Role


class User(IDMixin, TimestampMixin, Base):
    """Staff account: probation officers, supervisors and administrators."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False, default=Role.OFFICER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    clients: Mapped[List["Client"]] = relationship(back_populates="officer")
