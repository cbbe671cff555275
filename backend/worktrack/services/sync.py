"""Offline sync queue.

Mobile clients record operations while disconnected and submit them in
batches. Each queued operation is applied through the same service calls
the online endpoints use, one transaction per item, so a failing item
never rolls back its neighbours.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ClientActor, actor_id, actor_type, ensure_client_access, require_staff
from worktrack.core.errors import (
    NotFoundError,
    OperationNotInConflict,
    PermissionDenied,
    ValidationError,
    WorktrackError,
)
from worktrack.core.observability import sync_operations_total
from worktrack.core.settings import settings
from worktrack.db.base import as_utc, utcnow
from worktrack.models.client import Client
from worktrack.models.enums import (
    ConflictResolution,
    PhotoType,
    SyncOperationKind,
    SyncResourceType,
    SyncStatus,
    WorkSessionStatus,
)
from worktrack.models.sync_operation import SyncOperation
from worktrack.models.work_session import WorkSession
from worktrack.services import work_sessions
from worktrack.services.biometrics import decode_image, enroll_client, samples_from_payload
from worktrack.services.matcher import FaceMatcher

logger = logging.getLogger("sync")

CREATE_OPERATIONS = frozenset(
    {
        SyncOperationKind.START_WORK_SESSION,
        SyncOperationKind.RECORD_LOCATION,
        SyncOperationKind.UPLOAD_PHOTO,
        SyncOperationKind.ENROLL_FACE,
    }
)

DEFAULT_RESOURCE_TYPES = {
    SyncOperationKind.START_WORK_SESSION: SyncResourceType.WORK_SESSION,
    SyncOperationKind.RECORD_LOCATION: SyncResourceType.LOCATION_SAMPLE,
    SyncOperationKind.END_WORK_SESSION: SyncResourceType.WORK_SESSION,
    SyncOperationKind.UPDATE_WORK_SESSION: SyncResourceType.WORK_SESSION,
    SyncOperationKind.UPLOAD_PHOTO: SyncResourceType.PHOTO,
    SyncOperationKind.ENROLL_FACE: SyncResourceType.BIOMETRIC_ENROLLMENT,
}


@dataclass(frozen=True)
class OperationInput:
    operation: SyncOperationKind
    resource_id: str
    client_timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)
    resource_type: Optional[SyncResourceType] = None
    priority: Optional[int] = None
    max_retries: Optional[int] = None


@dataclass
class DrainSummary:
    processed: int = 0
    completed: int = 0
    failed: int = 0
    conflicts: int = 0
    retried: int = 0
    reclaimed: int = 0
    operation_ids: list[int] = field(default_factory=list)


class SyncConflict(Exception):
    """Raised inside an item's transaction; never escapes ``drain_queue``."""

    def __init__(self, reason: str, server_record: Optional[dict[str, Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.server_record = server_record or {}


@dataclass(frozen=True)
class Applied:
    server_resource_id: Optional[int]
    noop: bool = False


# ── Queue bookkeeping ───────────────────────────────────────────────────


def _owner_filter(query, owner: Actor):
    return query.filter(
        SyncOperation.owner_type == actor_type(owner),
        SyncOperation.owner_id == actor_id(owner),
    )


def request_hash(op: OperationInput) -> str:
    body = {
        "operation": op.operation.value,
        "resource_type": (op.resource_type or DEFAULT_RESOURCE_TYPES[op.operation]).value,
        "resource_id": op.resource_id,
        "data": op.data,
        "client_timestamp": as_utc(op.client_timestamp).isoformat(),
    }
    encoded = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def enqueue_operation(
    db: Session,
    *,
    owner: Actor,
    op: OperationInput,
    device_id: Optional[str] = None,
) -> SyncOperation:
    if not op.resource_id:
        raise ValidationError("resource_id is required")
    digest = request_hash(op)
    existing = (
        _owner_filter(db.query(SyncOperation), owner)
        .filter(SyncOperation.request_hash == digest)
        .order_by(SyncOperation.id.asc())
        .first()
    )
    if existing is not None:
        return existing

    row = SyncOperation(
        owner_type=actor_type(owner),
        owner_id=actor_id(owner),
        device_id=device_id,
        operation=op.operation,
        resource_type=op.resource_type or DEFAULT_RESOURCE_TYPES[op.operation],
        resource_id=op.resource_id,
        payload=op.data or {},
        priority=op.priority if op.priority is not None else settings.sync_default_priority,
        client_timestamp=as_utc(op.client_timestamp),
        request_hash=digest,
        status=SyncStatus.PENDING,
        retry_count=0,
        max_retries=op.max_retries if op.max_retries is not None else settings.sync_max_retries,
    )
    db.add(row)
    db.flush()
    return row


def get_operation(db: Session, *, owner: Actor, operation_id: int) -> SyncOperation:
    row = _owner_filter(db.query(SyncOperation), owner).filter(SyncOperation.id == operation_id).one_or_none()
    if row is None:
        raise NotFoundError("Sync operation not found")
    return row


def _reclaim_stale(db: Session, owner: Actor, now: datetime) -> int:
    cutoff = now - timedelta(seconds=settings.sync_processing_timeout_seconds)
    stale = (
        _owner_filter(db.query(SyncOperation), owner)
        .filter(
            SyncOperation.status == SyncStatus.PROCESSING,
            SyncOperation.processing_started_at < cutoff,
        )
        .all()
    )
    for row in stale:
        row.status = SyncStatus.PENDING
        row.processing_started_at = None
    if stale:
        db.commit()
        logger.warning("sync_reclaimed_stale", extra={"outcome": len(stale)})
    return len(stale)


# ── Drain ───────────────────────────────────────────────────────────────


def drain_queue(
    db: Session,
    *,
    owner: Actor,
    matcher: FaceMatcher,
    device_id: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> DrainSummary:
    summary = DrainSummary()
    now = utcnow()
    summary.reclaimed = _reclaim_stale(db, owner, now)

    query = _owner_filter(db.query(SyncOperation), owner).filter(
        SyncOperation.status == SyncStatus.PENDING,
        SyncOperation.retry_count < SyncOperation.max_retries,
    )
    if device_id:
        query = query.filter(SyncOperation.device_id == device_id)
    batch = (
        query.order_by(
            SyncOperation.priority.desc(),
            SyncOperation.client_timestamp.asc(),
            SyncOperation.id.asc(),
        )
        .limit(batch_size or settings.sync_batch_size)
        .with_for_update(skip_locked=True)
        .all()
    )

    for row in batch:
        _process_one(db, row, owner=owner, matcher=matcher, summary=summary)
    return summary


def _process_one(
    db: Session,
    row: SyncOperation,
    *,
    owner: Actor,
    matcher: FaceMatcher,
    summary: DrainSummary,
) -> None:
    row_id = row.id
    if not _claim(db, row_id):
        # Another drain got here first, or the row already finished.
        return
    row = db.get(SyncOperation, row_id, populate_existing=True)

    summary.processed += 1
    summary.operation_ids.append(row_id)
    try:
        applied = apply_operation(db, row, owner=owner, matcher=matcher)
    except SyncConflict as conflict:
        db.rollback()
        row = db.get(SyncOperation, row_id)
        row.status = SyncStatus.CONFLICT
        row.error_message = conflict.reason
        row.conflict_data = {
            "reason": conflict.reason,
            "server": conflict.server_record,
            "client": row.payload,
        }
        row.processing_started_at = None
        db.commit()
        summary.conflicts += 1
        sync_operations_total.labels(status=SyncStatus.CONFLICT.value).inc()
        logger.info(
            "sync_conflict",
            extra={"operation_id": row_id, "operation": row.operation.value, "error": conflict.reason},
        )
        return
    except WorktrackError as exc:
        db.rollback()
        _record_failure(db, row_id, exc.detail, summary)
        return
    except Exception as exc:
        db.rollback()
        logger.exception("sync_item_crashed", extra={"operation_id": row_id})
        _record_failure(db, row_id, f"{type(exc).__name__}: {exc}", summary)
        return

    row.status = SyncStatus.COMPLETED
    row.server_resource_id = applied.server_resource_id
    row.processed_at = utcnow()
    row.processing_started_at = None
    row.error_message = None
    db.commit()
    summary.completed += 1
    sync_operations_total.labels(status=SyncStatus.COMPLETED.value).inc()
    logger.info(
        "sync_item_applied",
        extra={"operation_id": row_id, "operation": row.operation.value, "outcome": "noop" if applied.noop else "applied"},
    )


def _claim(db: Session, row_id: int) -> bool:
    claimed = (
        db.query(SyncOperation)
        .filter(SyncOperation.id == row_id, SyncOperation.status == SyncStatus.PENDING)
        .update(
            {SyncOperation.status: SyncStatus.PROCESSING, SyncOperation.processing_started_at: utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    return claimed == 1


def _record_failure(db: Session, row_id: int, message: str, summary: DrainSummary) -> None:
    row = db.get(SyncOperation, row_id)
    row.retry_count += 1
    row.error_message = message
    row.processing_started_at = None
    if row.retry_count >= row.max_retries:
        row.status = SyncStatus.FAILED
        row.processed_at = utcnow()
        summary.failed += 1
    else:
        row.status = SyncStatus.PENDING
        summary.retried += 1
    db.commit()
    sync_operations_total.labels(status=row.status.value).inc()
    logger.warning(
        "sync_item_failed",
        extra={"operation_id": row_id, "operation": row.operation.value, "error": message},
    )


# ── Application ─────────────────────────────────────────────────────────


def _parse_time(value: Any, *, default: datetime) -> datetime:
    if value in (None, ""):
        return default
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc


def _require(data: dict[str, Any], *keys: str) -> list[Any]:
    missing = [key for key in keys if data.get(key) is None]
    if missing:
        raise ValidationError(f"Missing fields: {', '.join(missing)}")
    return [data[key] for key in keys]


def session_record(session: WorkSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "client_id": session.client_id,
        "status": session.status.value,
        "start_time": as_utc(session.start_time).isoformat(),
        "end_time": as_utc(session.end_time).isoformat() if session.end_time else None,
        "hours_worked": session.hours_worked,
        "work_description": session.work_description,
        "modified_at": as_utc(session.modified_at).isoformat(),
    }


def _completed_duplicate(db: Session, row: SyncOperation) -> Optional[SyncOperation]:
    return (
        db.query(SyncOperation)
        .filter(
            SyncOperation.owner_type == row.owner_type,
            SyncOperation.owner_id == row.owner_id,
            SyncOperation.operation == row.operation,
            SyncOperation.resource_type == row.resource_type,
            SyncOperation.resource_id == row.resource_id,
            SyncOperation.status == SyncStatus.COMPLETED,
            SyncOperation.id != row.id,
        )
        .order_by(SyncOperation.id.asc())
        .first()
    )


def resolve_session_id(db: Session, row: SyncOperation, *, reference: Optional[str] = None) -> int:
    """Map a payload's session reference to a server id.

    Accepts an explicit ``session_id``; otherwise looks up the completed
    start operation that created the client-local id.
    """
    data = row.payload or {}
    if data.get("session_id") is not None:
        return int(data["session_id"])
    local_id = data.get("session_local_id") or reference
    if not local_id:
        raise ValidationError("Operation does not reference a work session")
    start = (
        db.query(SyncOperation)
        .filter(
            SyncOperation.owner_type == row.owner_type,
            SyncOperation.owner_id == row.owner_id,
            SyncOperation.operation == SyncOperationKind.START_WORK_SESSION,
            SyncOperation.resource_id == str(local_id),
            SyncOperation.status == SyncStatus.COMPLETED,
        )
        .order_by(SyncOperation.id.desc())
        .first()
    )
    if start is None or start.server_resource_id is None:
        raise NotFoundError(f"Work session '{local_id}' has not been synced yet")
    return start.server_resource_id


def _owned_session(db: Session, owner: Actor, session_id: int) -> WorkSession:
    session = work_sessions.get_session(db, session_id)
    ensure_client_access(owner, client_id=session.client_id, officer_id=session.client.officer_id)
    return session


def _owner_client_id(owner: Actor, data: dict[str, Any]) -> int:
    if isinstance(owner, ClientActor):
        return owner.client_id
    raw = data.get("client_id")
    if raw is None:
        raise ValidationError("client_id is required for staff-submitted operations")
    return int(raw)


def _apply_start(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    latitude, longitude = _require(data, "latitude", "longitude")
    client_id = _owner_client_id(owner, data)
    start_time = _parse_time(data.get("start_time"), default=as_utc(row.client_timestamp))

    client = db.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    ensure_client_access(owner, client_id=client.id, officer_id=client.officer_id)

    existing = work_sessions.session_started_at(db, client_id, start_time)
    if existing is not None:
        raise SyncConflict("A work session already exists for this start time", session_record(existing))

    transition = work_sessions.start_session(
        db,
        client_id=client_id,
        latitude=latitude,
        longitude=longitude,
        samples=samples_from_payload(data.get("samples") or []),
        matcher=matcher,
        started_at=start_time,
        device_info=data.get("device_info"),
    )
    return Applied(server_resource_id=transition.session.id)


def _apply_location(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    latitude, longitude = _require(data, "latitude", "longitude")
    session = _owned_session(db, owner, resolve_session_id(db, row))
    transition = work_sessions.record_location(
        db,
        session_id=session.id,
        location=work_sessions.LocationInput(
            latitude=latitude,
            longitude=longitude,
            recorded_at=_parse_time(data.get("recorded_at"), default=as_utc(row.client_timestamp)),
            accuracy=data.get("accuracy"),
            altitude=data.get("altitude"),
            speed=data.get("speed"),
            heading=data.get("heading"),
            client_ref=row.resource_id,
        ),
    )
    return Applied(server_resource_id=transition.sample.id if transition.sample else None)


def _apply_end(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    latitude, longitude = _require(data, "latitude", "longitude")
    session = _owned_session(db, owner, resolve_session_id(db, row, reference=row.resource_id))
    if session.status != WorkSessionStatus.ACTIVE:
        raise SyncConflict("Work session is no longer active", session_record(session))
    transition = work_sessions.end_session(
        db,
        session_id=session.id,
        latitude=latitude,
        longitude=longitude,
        ended_at=_parse_time(data.get("end_time"), default=as_utc(row.client_timestamp)),
    )
    return Applied(server_resource_id=transition.session.id)


def _apply_update(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    session = _owned_session(db, owner, resolve_session_id(db, row, reference=row.resource_id))
    client_ts = as_utc(row.client_timestamp)
    if not row.force_apply and as_utc(session.modified_at) > client_ts:
        raise SyncConflict("Server copy was modified after this change was made", session_record(session))
    work_sessions.update_session_details(
        db,
        session_id=session.id,
        work_description=data.get("work_description"),
        modified_at=client_ts,
    )
    return Applied(server_resource_id=session.id)


def _apply_photo(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    (image,) = _require(data, "image_base64")
    session = _owned_session(db, owner, resolve_session_id(db, row))
    try:
        photo_type = PhotoType(str(data.get("photo_type") or PhotoType.PROCESS.value).lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown photo type: {data.get('photo_type')!r}") from exc
    content = decode_image(str(image), label="photo")
    photo = work_sessions.attach_photo(
        db,
        session_id=session.id,
        photo_type=photo_type,
        content=content,
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        taken_at=_parse_time(data.get("taken_at"), default=as_utc(row.client_timestamp)),
        client_ref=row.resource_id,
    )
    return Applied(server_resource_id=photo.id)


def _apply_enroll(db, row, owner, matcher) -> Applied:
    data = row.payload or {}
    require_staff(owner)
    (client_id,) = _require(data, "client_id")
    client = db.get(Client, int(client_id))
    if client is None:
        raise NotFoundError("Client not found")
    ensure_client_access(owner, client_id=client.id, officer_id=client.officer_id)
    enroll_client(
        db,
        client_id=client.id,
        samples=samples_from_payload(data.get("samples") or []),
        matcher=matcher,
    )
    return Applied(server_resource_id=client.id)


_HANDLERS: dict[SyncOperationKind, Callable[..., Applied]] = {
    SyncOperationKind.START_WORK_SESSION: _apply_start,
    SyncOperationKind.RECORD_LOCATION: _apply_location,
    SyncOperationKind.END_WORK_SESSION: _apply_end,
    SyncOperationKind.UPDATE_WORK_SESSION: _apply_update,
    SyncOperationKind.UPLOAD_PHOTO: _apply_photo,
    SyncOperationKind.ENROLL_FACE: _apply_enroll,
}


def apply_operation(db: Session, row: SyncOperation, *, owner: Actor, matcher: FaceMatcher) -> Applied:
    if row.operation in CREATE_OPERATIONS:
        duplicate = _completed_duplicate(db, row)
        if duplicate is not None:
            return Applied(server_resource_id=duplicate.server_resource_id, noop=True)
    handler = _HANDLERS.get(row.operation)
    if handler is None:
        raise ValidationError(f"Unsupported operation: {row.operation}")
    return handler(db, row, owner, matcher)


# ── Conflicts and maintenance ───────────────────────────────────────────


def resolve_conflict(
    db: Session,
    *,
    owner: Actor,
    operation_id: int,
    resolution: ConflictResolution,
) -> SyncOperation:
    row = get_operation(db, owner=owner, operation_id=operation_id)
    if row.status != SyncStatus.CONFLICT:
        raise OperationNotInConflict(status=row.status.value)

    if resolution == ConflictResolution.USE_SERVER:
        server = (row.conflict_data or {}).get("server") or {}
        row.status = SyncStatus.COMPLETED
        row.server_resource_id = server.get("id")
        row.processed_at = utcnow()
        row.error_message = None
    elif resolution == ConflictResolution.USE_CLIENT:
        row.status = SyncStatus.PENDING
        row.retry_count = 0
        row.force_apply = True
        row.error_message = None
    elif resolution == ConflictResolution.DISCARD:
        row.status = SyncStatus.FAILED
        row.discarded = True
        row.error_message = "Discarded by user"
        row.processed_at = utcnow()
    else:  # pragma: no cover - enum is closed
        raise ValidationError(f"Unknown resolution: {resolution}")
    db.flush()
    logger.info(
        "sync_conflict_resolved",
        extra={"operation_id": row.id, "operation": row.operation.value, "outcome": resolution.value},
    )
    return row


def queue_status(db: Session, *, owner: Actor) -> dict[str, int]:
    counts = {status.value: 0 for status in SyncStatus}
    rows = (
        _owner_filter(db.query(SyncOperation.status, func.count(SyncOperation.id)), owner)
        .group_by(SyncOperation.status)
        .all()
    )
    for status, count in rows:
        counts[status.value] = int(count)
    counts["total"] = sum(counts[status.value] for status in SyncStatus)
    return counts


def global_queue_counts(db: Session) -> tuple[int, int]:
    pending = db.query(SyncOperation).filter(SyncOperation.status == SyncStatus.PENDING).count()
    conflicts = db.query(SyncOperation).filter(SyncOperation.status == SyncStatus.CONFLICT).count()
    return pending, conflicts


def list_operations(
    db: Session,
    *,
    owner: Actor,
    status: Optional[SyncStatus] = None,
    limit: int = 100,
) -> list[SyncOperation]:
    query = _owner_filter(db.query(SyncOperation), owner)
    if status is not None:
        query = query.filter(SyncOperation.status == status)
    return (
        query.order_by(
            SyncOperation.priority.desc(),
            SyncOperation.client_timestamp.asc(),
            SyncOperation.id.asc(),
        )
        .limit(limit)
        .all()
    )


def list_conflicts(db: Session, *, owner: Actor) -> list[SyncOperation]:
    return list_operations(db, owner=owner, status=SyncStatus.CONFLICT)


def retry_failed(db: Session, *, owner: Actor) -> int:
    rows = (
        _owner_filter(db.query(SyncOperation), owner)
        .filter(SyncOperation.status == SyncStatus.FAILED, SyncOperation.discarded.is_(False))
        .all()
    )
    for row in rows:
        row.status = SyncStatus.PENDING
        row.retry_count = 0
        row.error_message = None
        row.processed_at = None
    db.flush()
    return len(rows)


def clear_completed(db: Session, *, owner: Actor, older_than_days: Optional[int] = None) -> int:
    days = settings.sync_completed_retention_days if older_than_days is None else older_than_days
    cutoff = utcnow() - timedelta(days=days)
    rows = (
        _owner_filter(db.query(SyncOperation), owner)
        .filter(
            SyncOperation.status == SyncStatus.COMPLETED,
            SyncOperation.processed_at < cutoff,
        )
        .all()
    )
    for row in rows:
        db.delete(row)
    db.flush()
    return len(rows)


def delete_operation(db: Session, *, owner: Actor, operation_id: int) -> None:
    row = get_operation(db, owner=owner, operation_id=operation_id)
    if row.status == SyncStatus.PROCESSING:
        raise PermissionDenied("Operation is being processed")
    db.delete(row)
    db.flush()
