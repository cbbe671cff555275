from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, IDMixin, TimestampMixin


class Client(IDMixin, TimestampMixin, Base):
    """A monitored person serving community-service hours."""

    __tablename__ = "clients"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    id_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    officer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    work_location_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("work_locations.id"),
        nullable=True,
        index=True,
    )

    assigned_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    completed_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    face_registered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    face_registered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    matcher_subject_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    lockout_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Failures before this moment no longer count toward the daily limit.
    attempts_reset_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    officer: Mapped[Optional["User"]] = relationship(back_populates="clients")
    work_location: Mapped[Optional["WorkLocation"]] = relationship()
    enrollments: Mapped[List["BiometricEnrollment"]] = relationship(
        back_populates="client",
        cascade="all, delete-orphan",
    )

    @property
    def remaining_hours(self) -> float:
        return max(round((self.assigned_hours or 0) - (self.completed_hours or 0), 2), 0.0)
