"""WorkSession model: one supervised stretch of community-service work."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Index, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, IDMixin, TimestampMixin
from worktrack.models.enums import WorkSessionStatus


class WorkSession(IDMixin, TimestampMixin, Base):
    __tablename__ = "work_sessions"
    __table_args__ = (
        # Enum columns persist member names.
        Index(
            "uq_work_sessions_active_client",
            "client_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_work_sessions_client_start", "client_id", "start_time"),
    )

    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    work_location_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("work_locations.id"),
        nullable=True,
        index=True,
    )
    status: Mapped[WorkSessionStatus] = mapped_column(
        Enum(WorkSessionStatus, name="work_session_status"),
        nullable=False,
        default=WorkSessionStatus.ACTIVE,
        index=True,
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    start_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    start_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    end_latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    end_longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hours_worked: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    work_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    biometric_attempt_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("biometric_attempts.id"),
        nullable=True,
    )

    verified_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    verification_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Logical last-modified time of the record, compared against sync client timestamps.
    modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_sample_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    client: Mapped["Client"] = relationship()
    work_location: Mapped[Optional["WorkLocation"]] = relationship()
    biometric_attempt: Mapped[Optional["BiometricAttempt"]] = relationship(
        foreign_keys=[biometric_attempt_id],
    )
    violations: Mapped[List["GeofenceViolation"]] = relationship(
        back_populates="work_session",
        order_by="GeofenceViolation.started_at",
    )
    photos: Mapped[List["Photo"]] = relationship(
        back_populates="work_session",
        order_by="Photo.taken_at",
    )

    @property
    def is_active(self) -> bool:
        return self.status == WorkSessionStatus.ACTIVE
