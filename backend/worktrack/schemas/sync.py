from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from worktrack.models.enums import ConflictResolution, SyncOperationKind, SyncResourceType, SyncStatus
from worktrack.schemas.base import ORMModel


class SyncOperationIn(BaseModel):
    operation: SyncOperationKind
    resource_type: Optional[SyncResourceType] = None
    resource_id: str = Field(min_length=1, max_length=128)
    data: dict[str, Any] = Field(default_factory=dict)
    priority: Optional[int] = Field(default=None, ge=0, le=100)
    client_timestamp: datetime


class SyncBatchRequest(BaseModel):
    device_id: Optional[str] = Field(default=None, max_length=128)
    operations: List[SyncOperationIn] = Field(min_length=1, max_length=500)


class DrainRequest(BaseModel):
    device_id: Optional[str] = None
    batch_size: Optional[int] = Field(default=None, ge=1, le=500)


class DrainSummaryRead(ORMModel):
    processed: int
    completed: int
    failed: int
    conflicts: int
    retried: int
    reclaimed: int


class SyncItemResult(BaseModel):
    client_id: str
    operation_id: int
    status: SyncStatus
    success: bool
    server_resource_id: Optional[int] = None
    error: Optional[str] = None


class SyncBatchResponse(BaseModel):
    results: List[SyncItemResult]
    summary: DrainSummaryRead


class SyncOperationRead(ORMModel):
    id: int
    device_id: Optional[str] = None
    operation: SyncOperationKind
    resource_type: SyncResourceType
    resource_id: str
    payload: dict[str, Any]
    priority: int
    client_timestamp: datetime
    status: SyncStatus
    retry_count: int
    max_retries: int
    discarded: bool = False
    error_message: Optional[str] = None
    conflict_data: Optional[dict[str, Any]] = None
    server_resource_id: Optional[int] = None
    processed_at: Optional[datetime] = None


class ResolveConflictRequest(BaseModel):
    resolution: ConflictResolution


class QueueStatusRead(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    conflict: int
    total: int
