from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from worktrack.db.base import Base, IDMixin, TimestampMixin
from worktrack.models.enums import ActorType, SyncOperationKind, SyncResourceType, SyncStatus


class SyncOperation(IDMixin, TimestampMixin, Base):
    """A client-originated mutation awaiting idempotent application."""

    __tablename__ = "sync_operations"
    __table_args__ = (
        Index("ix_sync_operations_owner_status", "owner_type", "owner_id", "status"),
        Index("ix_sync_operations_owner_hash", "owner_type", "owner_id", "request_hash"),
        Index(
            "ix_sync_operations_logical_key",
            "owner_type",
            "owner_id",
            "operation",
            "resource_type",
            "resource_id",
        ),
    )

    owner_type: Mapped[ActorType] = mapped_column(Enum(ActorType, name="actor_type"), nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    device_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    operation: Mapped[SyncOperationKind] = mapped_column(
        Enum(SyncOperationKind, name="sync_operation_kind"),
        nullable=False,
    )
    resource_type: Mapped[SyncResourceType] = mapped_column(
        Enum(SyncResourceType, name="sync_resource_type"),
        nullable=False,
    )
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    client_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, name="sync_status"),
        nullable=False,
        default=SyncStatus.PENDING,
    )
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    force_apply: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set when a conflict is discarded; such rows stay failed for good.
    discarded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    conflict_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    server_resource_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
