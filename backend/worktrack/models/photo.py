from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Enum, Float, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from worktrack.db.base import Base, CreatedAtMixin, IDMixin
from worktrack.models.enums import PhotoType


class Photo(IDMixin, CreatedAtMixin, Base):
    __tablename__ = "work_session_photos"
    __table_args__ = (
        UniqueConstraint("work_session_id", "client_ref", name="uq_work_session_photos_session_client_ref"),
    )

    work_session_id: Mapped[int] = mapped_column(ForeignKey("work_sessions.id"), nullable=False, index=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"), nullable=False, index=True)
    photo_type: Mapped[PhotoType] = mapped_column(Enum(PhotoType, name="photo_type"), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(nullable=False, default=0)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    client_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    work_session: Mapped["WorkSession"] = relationship(back_populates="photos")
