from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Enum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from worktrack.db.base import Base, IDMixin, TimestampMixin
from worktrack.models.enums import FenceShape


class WorkLocation(IDMixin, TimestampMixin, Base):
    __tablename__ = "work_locations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    center_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    center_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    shape: Mapped[FenceShape] = mapped_column(
        Enum(FenceShape, name="fence_shape"),
        nullable=False,
        default=FenceShape.CIRCLE,
    )
    radius_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    size_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
