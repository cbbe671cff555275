"""Biometric gate: face enrollment and verification with brute-force lockout."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from worktrack.core.errors import (
    AttemptsExhausted,
    BiometricMismatch,
    EnrollmentAlreadyExists,
    EnrollmentFailed,
    InsufficientSamples,
    InvalidSample,
    Locked,
    MatcherUnavailable,
    MissingAngle,
    NotEnrolled,
    NotFoundError,
    PermissionDenied,
)
from worktrack.core.actors import StaffActor
from worktrack.core.locks import client_lock, lock_client_row
from worktrack.core.observability import biometric_attempts_total
from worktrack.core.settings import settings
from worktrack.db.base import as_utc, utcnow
from worktrack.models.biometric import BiometricAttempt, BiometricEnrollment
from worktrack.models.client import Client
from worktrack.models.enums import AttemptOutcome, NotificationType, Role, SampleAngle
from worktrack.services.matcher import FaceMatcher, subject_for_client
from worktrack.services.notifications import notify_officer

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")

MIN_ENROLLMENT_SAMPLES = 3
MAX_ENROLLMENT_SAMPLES = 5
VERIFICATION_ANGLES = frozenset({SampleAngle.FRONTAL, SampleAngle.LEFT, SampleAngle.RIGHT})


@dataclass(frozen=True)
class Sample:
    """A tagged face photo; image bytes are decoded on first access."""

    angle: SampleAngle
    image_base64: str

    @property
    def data(self) -> bytes:
        return decode_image(self.image_base64, label=self.angle.value)


def decode_image(image_base64: str, *, label: str = "image") -> bytes:
    """Decode plain or data-URL base64 image content."""
    raw = (image_base64 or "").strip()
    if raw.startswith("data:") and "," in raw:
        raw = raw.split(",", 1)[1]
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSample(f"'{label}' is not valid base64") from exc
    if not decoded:
        raise InvalidSample(f"'{label}' is empty")
    return decoded


def samples_from_payload(items: Iterable[Mapping[str, Any]]) -> list[Sample]:
    samples: list[Sample] = []
    for item in items or []:
        try:
            angle = SampleAngle(str(item.get("angle", "")).lower())
        except ValueError as exc:
            raise InvalidSample(f"Unknown sample angle: {item.get('angle')!r}") from exc
        image = item.get("image_base64") or item.get("image") or ""
        samples.append(Sample(angle=angle, image_base64=str(image)))
    return samples


def _decode_all(samples: Sequence[Sample]) -> list[bytes]:
    return [sample.data for sample in samples]


def validate_enrollment_samples(samples: Sequence[Sample]) -> list[bytes]:
    if not MIN_ENROLLMENT_SAMPLES <= len(samples) <= MAX_ENROLLMENT_SAMPLES:
        raise InsufficientSamples(
            f"Enrollment needs {MIN_ENROLLMENT_SAMPLES}-{MAX_ENROLLMENT_SAMPLES} samples, got {len(samples)}"
        )
    if not any(sample.angle == SampleAngle.FRONTAL for sample in samples):
        raise MissingAngle("Enrollment needs a frontal sample", missing=[SampleAngle.FRONTAL.value])
    return _decode_all(samples)


def validate_verification_samples(samples: Sequence[Sample]) -> bytes:
    """Check the three-angle liveness proxy and return the frontal image."""
    if len(samples) != len(VERIFICATION_ANGLES):
        raise InsufficientSamples(
            f"Verification needs exactly {len(VERIFICATION_ANGLES)} samples, got {len(samples)}"
        )
    present = {sample.angle for sample in samples}
    missing = sorted(angle.value for angle in VERIFICATION_ANGLES - present)
    if missing:
        raise MissingAngle(f"Missing photo angles: {', '.join(missing)}", missing=missing)
    decoded = _decode_all(samples)
    return next(data for sample, data in zip(samples, decoded) if sample.angle == SampleAngle.FRONTAL)


# ── Attempt window ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class AttemptWindow:
    """Failed-attempt counter derived from the attempt log.

    ``failed`` counts rejections since the latest of local midnight, the
    client's latest accepted attempt and an admin reset, so a success or
    a reset brings it back to zero.
    """

    window_start: datetime
    attempts_today: int
    failed: int
    max_attempts: int

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.failed, 0)

    @property
    def exhausted(self) -> bool:
        return self.failed >= self.max_attempts

    @property
    def next_sequence(self) -> int:
        return self.attempts_today + 1


def local_day_start(now: datetime) -> datetime:
    local_now = as_utc(now).astimezone(settings.tz)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)


def attempt_window(db: Session, client_id: int, *, now: Optional[datetime] = None) -> AttemptWindow:
    now = now or utcnow()
    day_start = local_day_start(now)
    base = db.query(BiometricAttempt).filter(
        BiometricAttempt.client_id == client_id,
        BiometricAttempt.created_at >= day_start,
    )
    attempts_today = base.with_entities(func.count(BiometricAttempt.id)).scalar() or 0

    last_success = (
        base.filter(BiometricAttempt.outcome == AttemptOutcome.ACCEPTED)
        .order_by(BiometricAttempt.created_at.desc(), BiometricAttempt.id.desc())
        .first()
    )
    failed_query = base.filter(BiometricAttempt.outcome == AttemptOutcome.REJECTED)
    if last_success is not None:
        failed_query = failed_query.filter(BiometricAttempt.id > last_success.id)
    client = db.get(Client, client_id)
    reset_at = as_utc(client.attempts_reset_at) if client is not None else None
    if reset_at is not None and reset_at > day_start:
        failed_query = failed_query.filter(BiometricAttempt.created_at > reset_at)
    failed = failed_query.with_entities(func.count(BiometricAttempt.id)).scalar() or 0

    return AttemptWindow(
        window_start=day_start,
        attempts_today=int(attempts_today),
        failed=int(failed),
        max_attempts=settings.biometric_max_attempts,
    )


# ── Enrollment ──────────────────────────────────────────────────────────


def enroll_client(
    db: Session,
    *,
    client_id: int,
    samples: Sequence[Sample],
    matcher: FaceMatcher,
) -> list[BiometricEnrollment]:
    images = validate_enrollment_samples(samples)

    with client_lock(client_id):
        client = lock_client_row(db, client_id)
        if client.face_registered:
            raise EnrollmentAlreadyExists()

        subject_id = subject_for_client(client.id)
        registered: list[tuple[Sample, str]] = []
        try:
            for sample, image in zip(samples, images):
                registered.append((sample, matcher.register(subject_id, image)))
        except MatcherUnavailable as exc:
            logger.warning(
                "biometric_enrollment_failed",
                extra={"client_id": client.id, "error": str(exc)},
            )
            _compensate(matcher, subject_id, client_id=client.id)
            raise EnrollmentFailed(
                f"Registered {len(registered)} of {len(samples)} samples before failure"
            ) from exc

        primary_marked = False
        rows: list[BiometricEnrollment] = []
        for sample, image_id in registered:
            is_primary = sample.angle == SampleAngle.FRONTAL and not primary_marked
            primary_marked = primary_marked or is_primary
            row = BiometricEnrollment(
                client_id=client.id,
                angle=sample.angle,
                matcher_image_id=image_id,
                is_primary=is_primary,
            )
            db.add(row)
            rows.append(row)

        client.face_registered = True
        client.face_registered_at = utcnow()
        client.matcher_subject_id = subject_id
        db.flush()

    logger.info("biometric_enrolled", extra={"client_id": client_id, "outcome": len(rows)})
    return rows


def _compensate(matcher: FaceMatcher, subject_id: str, *, client_id: int) -> None:
    try:
        matcher.delete(subject_id)
    except MatcherUnavailable as exc:
        # The registration failure is what the caller needs to see.
        logger.error(
            "biometric_enrollment_compensation_failed",
            extra={"client_id": client_id, "error": str(exc)},
        )


def delete_enrollment(db: Session, *, client_id: int, matcher: FaceMatcher) -> None:
    """Remove every reference sample so the client can be re-enrolled."""
    with client_lock(client_id):
        client = lock_client_row(db, client_id)
        if not client.face_registered:
            raise NotEnrolled()
        matcher.delete(client.matcher_subject_id or subject_for_client(client.id))
        db.query(BiometricEnrollment).filter(BiometricEnrollment.client_id == client.id).delete(
            synchronize_session="fetch"
        )
        client.face_registered = False
        client.face_registered_at = None
        client.matcher_subject_id = None
        db.flush()
    logger.info("biometric_enrollment_deleted", extra={"client_id": client_id})


# ── Verification ────────────────────────────────────────────────────────


def verify_client(
    db: Session,
    *,
    client_id: int,
    samples: Sequence[Sample],
    matcher: FaceMatcher,
    device_info: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> BiometricAttempt:
    """Admit or refuse a verification attempt.

    Refusals that must survive the caller's rollback (a rejected attempt,
    a new lockout) are committed before the error is raised. A matcher
    outage raises ``MatcherUnavailable`` before anything is written.
    """
    now = now or utcnow()
    with client_lock(client_id):
        client = lock_client_row(db, client_id)
        if not client.face_registered:
            raise NotEnrolled()

        lockout_until = as_utc(client.lockout_until)
        if lockout_until is not None and lockout_until > now:
            raise Locked((lockout_until - now).total_seconds())

        frontal = validate_verification_samples(samples)

        window = attempt_window(db, client.id, now=now)
        if window.exhausted:
            _lock_out(db, client, now=now)
            raise AttemptsExhausted(settings.biometric_lockout_minutes)

        result = matcher.recognize(frontal)
        subject_id = client.matcher_subject_id or subject_for_client(client.id)
        accepted = (
            result.subject_id == subject_id
            and result.similarity >= settings.biometric_similarity_threshold
        )

        attempt = BiometricAttempt(
            client_id=client.id,
            sequence_number=window.next_sequence,
            similarity_score=result.similarity,
            liveness_passed=True,
            outcome=AttemptOutcome.ACCEPTED if accepted else AttemptOutcome.REJECTED,
            matched_subject_id=result.subject_id,
            error_message=None if accepted else "Face did not match the enrolled subject",
            device_info=device_info,
            created_at=now,
        )
        db.add(attempt)
        biometric_attempts_total.labels(outcome=attempt.outcome.value).inc()

        attempts_left = window.attempts_left if accepted else max(window.attempts_left - 1, 0)
        logger.info(
            "biometric_attempt",
            extra={
                "client_id": client.id,
                "outcome": attempt.outcome.value,
                "similarity": result.similarity,
                "attempts_left": attempts_left,
            },
        )

        if accepted:
            client.lockout_until = None
            db.flush()
            return attempt

        db.commit()
        raise BiometricMismatch(attempts_left=attempts_left, similarity=result.similarity)


def _lock_out(db: Session, client: Client, *, now: datetime) -> None:
    client.lockout_until = now + timedelta(minutes=settings.biometric_lockout_minutes)
    notify_officer(
        db,
        officer_id=client.officer_id,
        type=NotificationType.BIOMETRIC_LOCKOUT,
        title="Biometric verification locked",
        body=f"{client.full_name} exhausted today's face verification attempts.",
        payload={"client_id": client.id, "lockout_until": client.lockout_until.isoformat()},
    )
    db.commit()
    security_logger.warning(
        "biometric_lockout",
        extra={"client_id": client.id, "outcome": client.lockout_until.isoformat()},
    )


def reset_attempts(db: Session, *, client_id: int, admin: StaffActor) -> Client:
    """Lift a lockout and zero today's failed count. Admins only."""
    if admin.role != Role.ADMIN:
        raise PermissionDenied("Only administrators may reset verification attempts")
    with client_lock(client_id):
        client = lock_client_row(db, client_id)
        client.attempts_reset_at = utcnow()
        client.lockout_until = None
        db.flush()
    security_logger.info(
        "biometric_attempts_reset",
        extra={"client_id": client_id, "actor": admin.subject},
    )
    return client


# ── Queries ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EnrollmentStatus:
    client_id: int
    enrolled: bool
    enrolled_at: Optional[datetime]
    sample_count: int
    locked: bool
    lockout_until: Optional[datetime]
    minutes_remaining: int
    failed_attempts_today: int
    attempts_left: int


def enrollment_status(db: Session, *, client: Client, now: Optional[datetime] = None) -> EnrollmentStatus:
    now = now or utcnow()
    window = attempt_window(db, client.id, now=now)
    lockout_until = as_utc(client.lockout_until)
    locked = lockout_until is not None and lockout_until > now
    minutes_remaining = Locked((lockout_until - now).total_seconds()).minutes_remaining if locked else 0
    sample_count = (
        db.query(func.count(BiometricEnrollment.id))
        .filter(BiometricEnrollment.client_id == client.id)
        .scalar()
        or 0
    )
    return EnrollmentStatus(
        client_id=client.id,
        enrolled=client.face_registered,
        enrolled_at=as_utc(client.face_registered_at),
        sample_count=int(sample_count),
        locked=locked,
        lockout_until=lockout_until if locked else None,
        minutes_remaining=minutes_remaining,
        failed_attempts_today=window.failed,
        attempts_left=window.attempts_left,
    )


def list_attempts(db: Session, *, client_id: int, limit: int = 50) -> list[BiometricAttempt]:
    if db.get(Client, client_id) is None:
        raise NotFoundError("Client not found")
    return (
        db.query(BiometricAttempt)
        .filter(BiometricAttempt.client_id == client_id)
        .order_by(BiometricAttempt.created_at.desc(), BiometricAttempt.id.desc())
        .limit(limit)
        .all()
    )
