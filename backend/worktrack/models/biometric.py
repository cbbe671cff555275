from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Boolean, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, CreatedAtMixin, IDMixin
from worktrack.models.enums import AttemptOutcome, SampleAngle


class BiometricEnrollment(IDMixin, CreatedAtMixin, Base):
    """One reference face sample registered with the matcher."""

    __tablename__ = "biometric_enrollments"

    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    angle: Mapped[SampleAngle] = mapped_column(Enum(SampleAngle, name="sample_angle"), nullable=False)
    matcher_image_id: Mapped[str] = mapped_column(String(128), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    client: Mapped["Client"] = relationship(back_populates="enrollments")


class BiometricAttempt(IDMixin, CreatedAtMixin, Base):
    """Append-only log of verification attempts that reached the matcher."""

    __tablename__ = "biometric_attempts"

    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    work_session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("work_sessions.id", use_alter=True),
        nullable=True,
        index=True,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    similarity_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    liveness_passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    outcome: Mapped[AttemptOutcome] = mapped_column(
        Enum(AttemptOutcome, name="attempt_outcome"),
        nullable=False,
        index=True,
    )
    matched_subject_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    device_info: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
