"""Offline sync queue endpoints.

A client submits operations recorded while offline; the batch endpoint
queues them and drains the owner's queue in the same request.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor
from worktrack.core.deps import get_current_actor
from worktrack.db.session import get_db
from worktrack.models.enums import SyncStatus
from worktrack.schemas.sync import (
    DrainRequest,
    DrainSummaryRead,
    QueueStatusRead,
    ResolveConflictRequest,
    SyncBatchRequest,
    SyncBatchResponse,
    SyncItemResult,
    SyncOperationRead,
)
from worktrack.services import sync
from worktrack.services.matcher import FaceMatcher, get_matcher

router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/batch", response_model=SyncBatchResponse)
def submit_batch(
    payload: SyncBatchRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> SyncBatchResponse:
    rows = [
        sync.enqueue_operation(
            db,
            owner=actor,
            op=sync.OperationInput(
                operation=item.operation,
                resource_type=item.resource_type,
                resource_id=item.resource_id,
                data=item.data,
                priority=item.priority,
                client_timestamp=item.client_timestamp,
            ),
            device_id=payload.device_id,
        )
        for item in payload.operations
    ]
    db.commit()

    summary = sync.drain_queue(
        db,
        owner=actor,
        matcher=matcher,
        device_id=payload.device_id,
        batch_size=max(len(rows), 1),
    )

    results: list[SyncItemResult] = []
    for row in rows:
        db.refresh(row)
        results.append(
            SyncItemResult(
                client_id=row.resource_id,
                operation_id=row.id,
                status=row.status,
                success=row.status == SyncStatus.COMPLETED,
                server_resource_id=row.server_resource_id,
                error=row.error_message,
            )
        )
    return SyncBatchResponse(results=results, summary=DrainSummaryRead.model_validate(summary))


@router.post("/process", response_model=DrainSummaryRead)
def process_queue(
    payload: Optional[DrainRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> DrainSummaryRead:
    payload = payload or DrainRequest()
    summary = sync.drain_queue(
        db,
        owner=actor,
        matcher=matcher,
        device_id=payload.device_id,
        batch_size=payload.batch_size,
    )
    return DrainSummaryRead.model_validate(summary)


@router.get("/status", response_model=QueueStatusRead)
def queue_status(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> QueueStatusRead:
    return QueueStatusRead(**sync.queue_status(db, owner=actor))


@router.get("/operations", response_model=List[SyncOperationRead])
def list_operations(
    status_filter: Optional[SyncStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[SyncOperationRead]:
    rows = sync.list_operations(db, owner=actor, status=status_filter, limit=limit)
    return [SyncOperationRead.model_validate(row) for row in rows]


@router.get("/conflicts", response_model=List[SyncOperationRead])
def list_conflicts(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[SyncOperationRead]:
    return [SyncOperationRead.model_validate(row) for row in sync.list_conflicts(db, owner=actor)]


@router.post("/operations/{operation_id}/resolve", response_model=SyncOperationRead)
def resolve_conflict(
    operation_id: int,
    payload: ResolveConflictRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SyncOperationRead:
    row = sync.resolve_conflict(db, owner=actor, operation_id=operation_id, resolution=payload.resolution)
    db.commit()
    db.refresh(row)
    return SyncOperationRead.model_validate(row)


@router.post("/retry-failed")
def retry_failed(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    count = sync.retry_failed(db, owner=actor)
    db.commit()
    return {"requeued": count}


@router.delete("/completed")
def clear_completed(
    older_than_days: Optional[int] = Query(None, ge=0),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> dict:
    count = sync.clear_completed(db, owner=actor, older_than_days=older_than_days)
    db.commit()
    return {"deleted": count}


@router.delete("/operations/{operation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_operation(
    operation_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> None:
    sync.delete_operation(db, owner=actor, operation_id=operation_id)
    db.commit()
