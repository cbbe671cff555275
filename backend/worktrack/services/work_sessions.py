"""Work session state machine: active -> completed -> verified | rejected."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ClientActor, StaffActor, ensure_client_access
from worktrack.core.errors import (
    AlreadyActive,
    InvalidTimeRange,
    NotCompleted,
    NotFoundError,
    SessionNotActive,
    TimestampInFuture,
    ValidationError,
)
from worktrack.core.locks import client_lock, lock_client_row
from worktrack.core.settings import settings
from worktrack.db.base import as_utc, utcnow
from worktrack.models.client import Client
from worktrack.models.enums import NotificationType, PhotoType, VerificationOutcome, WorkSessionStatus
from worktrack.models.location import GeofenceViolation, LocationSample
from worktrack.models.photo import Photo
from worktrack.models.work_session import WorkSession
from worktrack.services import geo
from worktrack.services.biometrics import Sample, verify_client
from worktrack.services.geofence import close_open_violations, evaluate_sample
from worktrack.services.matcher import FaceMatcher
from worktrack.services.notifications import notify_client, notify_officer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationInput:
    latitude: float
    longitude: float
    recorded_at: Optional[datetime] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    client_ref: Optional[str] = None


@dataclass
class Transition:
    """Result of a state-changing call: the session plus any new violation."""

    session: WorkSession
    violation: Optional[GeofenceViolation] = None
    sample: Optional[LocationSample] = None


def get_session(db: Session, session_id: int) -> WorkSession:
    session = db.get(WorkSession, session_id)
    if session is None:
        raise NotFoundError("Work session not found")
    return session


def get_session_for(db: Session, session_id: int, actor: Actor) -> WorkSession:
    session = get_session(db, session_id)
    ensure_client_access(actor, client_id=session.client_id, officer_id=session.client.officer_id)
    return session


def active_session(db: Session, client_id: int) -> Optional[WorkSession]:
    return (
        db.query(WorkSession)
        .filter(WorkSession.client_id == client_id, WorkSession.status == WorkSessionStatus.ACTIVE)
        .one_or_none()
    )


def session_started_at(db: Session, client_id: int, start_time: datetime) -> Optional[WorkSession]:
    return (
        db.query(WorkSession)
        .filter(WorkSession.client_id == client_id, WorkSession.start_time == as_utc(start_time))
        .first()
    )


def list_sessions(
    db: Session,
    actor: Actor,
    *,
    client_id: Optional[int] = None,
    status: Optional[WorkSessionStatus] = None,
    limit: int = 100,
) -> list[WorkSession]:
    query = db.query(WorkSession).join(Client, Client.id == WorkSession.client_id)
    match actor:
        case ClientActor():
            query = query.filter(WorkSession.client_id == actor.client_id)
        case StaffActor() if not actor.sees_all_clients:
            query = query.filter(Client.officer_id == actor.user_id)
        case _:
            pass
    if client_id is not None:
        query = query.filter(WorkSession.client_id == client_id)
    if status is not None:
        query = query.filter(WorkSession.status == status)
    return query.order_by(WorkSession.start_time.desc()).limit(limit).all()


def device_time(value: Optional[datetime], *, field: str) -> datetime:
    """A device-reported time, or now. Times beyond the allowed clock skew are refused."""
    now = utcnow()
    if value is None:
        return now
    moment = as_utc(value)
    if moment > now + timedelta(seconds=settings.max_clock_skew_seconds):
        raise TimestampInFuture(f"{field} is ahead of server time", field=field)
    return moment


def _store_sample(db: Session, session: WorkSession, location: LocationInput) -> LocationSample:
    point = geo.validate_point(location.latitude, location.longitude)
    sample = LocationSample(
        work_session_id=session.id,
        client_id=session.client_id,
        latitude=point.latitude,
        longitude=point.longitude,
        accuracy=location.accuracy,
        altitude=location.altitude,
        speed=location.speed,
        heading=location.heading,
        recorded_at=device_time(location.recorded_at, field="recorded_at"),
        client_ref=location.client_ref,
    )
    db.add(sample)
    db.flush()
    return sample


def start_session(
    db: Session,
    *,
    client_id: int,
    latitude: float,
    longitude: float,
    samples: Sequence[Sample],
    matcher: FaceMatcher,
    started_at: Optional[datetime] = None,
    device_info: Optional[dict] = None,
) -> Transition:
    point = geo.validate_point(latitude, longitude)
    start_time = device_time(started_at, field="started_at")

    with client_lock(client_id):
        client = lock_client_row(db, client_id)
        current = active_session(db, client.id)
        if current is not None:
            raise AlreadyActive(session_id=current.id)

        attempt = verify_client(
            db,
            client_id=client.id,
            samples=samples,
            matcher=matcher,
            device_info=device_info,
        )
        # The accepted attempt stays on record even if the insert below loses a race.
        db.commit()
        lock_client_row(db, client.id)

        session = WorkSession(
            client_id=client.id,
            work_location_id=client.work_location_id,
            status=WorkSessionStatus.ACTIVE,
            start_time=start_time,
            start_latitude=point.latitude,
            start_longitude=point.longitude,
            biometric_attempt_id=attempt.id,
            modified_at=start_time,
        )
        db.add(session)
        try:
            db.flush()
        except IntegrityError as exc:
            # Another worker opened a session between our check and this insert.
            db.rollback()
            current = active_session(db, client.id)
            if current is not None:
                raise AlreadyActive(session_id=current.id) from exc
            raise AlreadyActive() from exc
        attempt.work_session_id = session.id

        first = _store_sample(
            db,
            session,
            LocationInput(latitude=point.latitude, longitude=point.longitude, recorded_at=start_time),
        )
        evaluation = evaluate_sample(db, session=session, sample=first)

    logger.info("work_session_started", extra={"session_id": session.id, "client_id": client_id})
    return Transition(session=session, violation=evaluation.opened, sample=first)


def record_location(db: Session, *, session_id: int, location: LocationInput) -> Transition:
    session = get_session(db, session_id)
    if location.client_ref:
        existing = (
            db.query(LocationSample)
            .filter(
                LocationSample.work_session_id == session.id,
                LocationSample.client_ref == location.client_ref,
            )
            .one_or_none()
        )
        if existing is not None:
            return Transition(session=session, sample=existing)
    if session.status != WorkSessionStatus.ACTIVE:
        raise SessionNotActive(status=session.status.value)

    sample = _store_sample(db, session, location)
    evaluation = evaluate_sample(db, session=session, sample=sample)
    return Transition(session=session, violation=evaluation.opened or evaluation.closed, sample=sample)


def end_session(
    db: Session,
    *,
    session_id: int,
    latitude: float,
    longitude: float,
    ended_at: Optional[datetime] = None,
) -> Transition:
    point = geo.validate_point(latitude, longitude)
    session = get_session(db, session_id)
    end_time = device_time(ended_at, field="ended_at")

    with client_lock(session.client_id):
        client = lock_client_row(db, session.client_id)
        session = (
            db.query(WorkSession)
            .filter(WorkSession.id == session_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        if session.status != WorkSessionStatus.ACTIVE:
            raise SessionNotActive(status=session.status.value)

        start_time = as_utc(session.start_time)
        if end_time < start_time:
            raise InvalidTimeRange()

        final = _store_sample(
            db,
            session,
            LocationInput(latitude=point.latitude, longitude=point.longitude, recorded_at=end_time),
        )
        evaluation = evaluate_sample(db, session=session, sample=final)
        close_open_violations(db, session=session, at=end_time)

        session.end_time = end_time
        session.end_latitude = point.latitude
        session.end_longitude = point.longitude
        session.hours_worked = round((end_time - start_time).total_seconds() / 3600, 2)
        session.status = WorkSessionStatus.COMPLETED
        session.modified_at = end_time
        db.flush()

        notify_officer(
            db,
            officer_id=client.officer_id,
            type=NotificationType.SESSION_AWAITING_REVIEW,
            title="Work session awaiting review",
            body=f"{client.full_name} completed {session.hours_worked:.2f} hours.",
            payload={"client_id": client.id, "session_id": session.id},
        )

    logger.info(
        "work_session_completed",
        extra={"session_id": session.id, "client_id": session.client_id},
    )
    return Transition(session=session, violation=evaluation.opened, sample=final)


def verify_session(
    db: Session,
    *,
    session_id: int,
    outcome: VerificationOutcome,
    verifier: StaffActor,
    notes: Optional[str] = None,
) -> Transition:
    session = get_session(db, session_id)
    ensure_client_access(verifier, client_id=session.client_id, officer_id=session.client.officer_id)

    with client_lock(session.client_id):
        # Status is re-read under the row lock so a retried call cannot add hours twice.
        locked = (
            db.query(WorkSession)
            .filter(WorkSession.id == session_id, WorkSession.status == WorkSessionStatus.COMPLETED)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if locked is None:
            db.refresh(session)
            raise NotCompleted(status=session.status.value)

        client = lock_client_row(db, locked.client_id)
        now = utcnow()
        locked.status = (
            WorkSessionStatus.VERIFIED if outcome == VerificationOutcome.VERIFIED else WorkSessionStatus.REJECTED
        )
        locked.verified_by_user_id = verifier.user_id
        locked.verification_notes = notes
        locked.verified_at = now
        locked.modified_at = now
        if outcome == VerificationOutcome.VERIFIED:
            client.completed_hours = round((client.completed_hours or 0) + (locked.hours_worked or 0), 2)
        db.flush()

        notify_client(
            db,
            client_id=client.id,
            type=(
                NotificationType.SESSION_VERIFIED
                if outcome == VerificationOutcome.VERIFIED
                else NotificationType.SESSION_REJECTED
            ),
            title=f"Work session {locked.status.value}",
            body=notes or f"Your work session was {locked.status.value}.",
            payload={"client_id": client.id, "session_id": locked.id},
        )

    logger.info(
        "work_session_reviewed",
        extra={"session_id": locked.id, "client_id": locked.client_id, "outcome": locked.status.value},
    )
    return Transition(session=locked)


def update_session_details(
    db: Session,
    *,
    session_id: int,
    work_description: Optional[str],
    modified_at: Optional[datetime] = None,
) -> WorkSession:
    session = get_session(db, session_id)
    if session.status in (WorkSessionStatus.VERIFIED, WorkSessionStatus.REJECTED):
        raise SessionNotActive("Reviewed sessions cannot be edited", status=session.status.value)
    session.work_description = work_description
    session.modified_at = device_time(modified_at, field="modified_at")
    db.flush()
    return session


# ── Photos ──────────────────────────────────────────────────────────────


def _session_upload_dir(session: WorkSession) -> Path:
    base = settings.ensure_uploads_dir()
    path = base / "work_sessions" / str(session.id)
    path.mkdir(parents=True, exist_ok=True)
    return path


def attach_photo(
    db: Session,
    *,
    session_id: int,
    photo_type: PhotoType,
    content: bytes,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    taken_at: Optional[datetime] = None,
    client_ref: Optional[str] = None,
    suffix: str = ".jpg",
) -> Photo:
    session = get_session(db, session_id)
    if client_ref:
        existing = (
            db.query(Photo)
            .filter(Photo.work_session_id == session.id, Photo.client_ref == client_ref)
            .one_or_none()
        )
        if existing is not None:
            return existing
    if session.status not in (WorkSessionStatus.ACTIVE, WorkSessionStatus.COMPLETED):
        raise SessionNotActive("Photos cannot be added to a reviewed session", status=session.status.value)
    if not content:
        raise ValidationError("Photo is empty")
    if (latitude is None) != (longitude is None):
        raise ValidationError("Photo coordinates need both latitude and longitude")
    if latitude is not None:
        geo.validate_point(latitude, longitude)

    taken = device_time(taken_at, field="taken_at")

    storage_path = _session_upload_dir(session) / f"{photo_type.value}_{uuid4().hex}{suffix}"
    storage_path.write_bytes(content)

    photo = Photo(
        work_session_id=session.id,
        client_id=session.client_id,
        photo_type=photo_type,
        file_path=str(storage_path),
        file_size=len(content),
        latitude=latitude,
        longitude=longitude,
        taken_at=taken,
        client_ref=client_ref,
    )
    db.add(photo)
    db.flush()
    return photo
