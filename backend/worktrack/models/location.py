from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, CreatedAtMixin, IDMixin, TimestampMixin
from worktrack.models.enums import ViolationType


class LocationSample(IDMixin, CreatedAtMixin, Base):
    __tablename__ = "location_samples"
    __table_args__ = (
        UniqueConstraint("work_session_id", "client_ref", name="uq_location_samples_session_client_ref"),
        Index("ix_location_samples_session_recorded", "work_session_id", "recorded_at"),
    )

    work_session_id: Mapped[int] = mapped_column(ForeignKey("work_sessions.id"), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    altitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    heading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    client_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    inside_fence: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    distance_from_center_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class GeofenceViolation(IDMixin, TimestampMixin, Base):
    """Maximal interval during which a session's samples fell outside its fence."""

    __tablename__ = "geofence_violations"

    work_session_id: Mapped[int] = mapped_column(ForeignKey("work_sessions.id"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    work_location_id: Mapped[Optional[int]] = mapped_column(ForeignKey("work_locations.id"), nullable=True)
    sample_id: Mapped[Optional[int]] = mapped_column(ForeignKey("location_samples.id"), nullable=True)
    violation_type: Mapped[ViolationType] = mapped_column(
        Enum(ViolationType, name="violation_type"),
        nullable=False,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    distance_from_center_m: Mapped[float] = mapped_column(Float, nullable=False)

    reviewer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    work_session: Mapped["WorkSession"] = relationship(back_populates="violations")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None
