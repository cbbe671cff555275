"""Domain error taxonomy.

Services raise these; ``worktrack.main`` renders them through a single
exception handler as ``{"detail": ..., "code": ..., **extra}``.
"""

from __future__ import annotations

import math
from typing import Any, Optional


class WorktrackError(Exception):
    status_code: int = 400
    code: str = "ERROR"
    default_detail: str = "Request failed"

    def __init__(self, detail: Optional[str] = None, **extra: Any) -> None:
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.detail, "code": self.code}
        payload.update(self.extra)
        return payload


# ── Validation ──────────────────────────────────────────────────────────


class ValidationError(WorktrackError):
    status_code = 422
    code = "VALIDATION_ERROR"
    default_detail = "Invalid input"


class InsufficientSamples(ValidationError):
    code = "INSUFFICIENT_SAMPLES"
    default_detail = "Wrong number of biometric samples supplied"


class MissingAngle(ValidationError):
    code = "MISSING_ANGLE"
    default_detail = "A required photo angle is missing"


class InvalidSample(ValidationError):
    code = "INVALID_SAMPLE"
    default_detail = "Biometric sample could not be decoded"


class InvalidTimeRange(ValidationError):
    code = "INVALID_TIME_RANGE"
    default_detail = "End time precedes start time"


class TimestampInFuture(ValidationError):
    code = "TIMESTAMP_IN_FUTURE"
    default_detail = "Timestamp is ahead of server time"


class NotFoundError(WorktrackError):
    status_code = 404
    code = "NOT_FOUND"
    default_detail = "Not found"


class PermissionDenied(WorktrackError):
    status_code = 403
    code = "FORBIDDEN"
    default_detail = "Not authorised"


# ── State conflicts ─────────────────────────────────────────────────────


class StateConflictError(WorktrackError):
    status_code = 409
    code = "STATE_CONFLICT"
    default_detail = "Resource state changed; re-fetch and retry"


class AlreadyActive(StateConflictError):
    code = "ALREADY_ACTIVE"
    default_detail = "Client already has an active work session"


class SessionNotActive(StateConflictError):
    code = "SESSION_NOT_ACTIVE"
    default_detail = "Work session is not active"


class NotCompleted(StateConflictError):
    code = "NOT_COMPLETED"
    default_detail = "Work session is not awaiting verification"


class EnrollmentAlreadyExists(StateConflictError):
    code = "ENROLLMENT_ALREADY_EXISTS"
    default_detail = "Client is already enrolled; delete the enrollment first"


class OperationNotInConflict(StateConflictError):
    code = "OPERATION_NOT_IN_CONFLICT"
    default_detail = "Sync operation is not awaiting conflict resolution"


# ── Security gate ───────────────────────────────────────────────────────


class SecurityGateError(WorktrackError):
    status_code = 403
    code = "SECURITY_GATE"
    default_detail = "Biometric verification refused"


class NotEnrolled(SecurityGateError):
    code = "NOT_ENROLLED"
    default_detail = "Client has no biometric enrollment"


class Locked(SecurityGateError):
    status_code = 423
    code = "LOCKED"

    def __init__(self, seconds_remaining: float) -> None:
        minutes = max(1, math.ceil(seconds_remaining / 60))
        super().__init__(
            f"Verification locked. Try again in {minutes} minutes",
            minutes_remaining=minutes,
        )
        self.minutes_remaining = minutes


class AttemptsExhausted(SecurityGateError):
    status_code = 429
    code = "ATTEMPTS_EXHAUSTED"

    def __init__(self, lockout_minutes: int) -> None:
        super().__init__(
            f"Too many failed attempts. Verification locked for {lockout_minutes} minutes",
            minutes_remaining=lockout_minutes,
        )
        self.minutes_remaining = lockout_minutes


class BiometricMismatch(SecurityGateError):
    status_code = 401
    code = "BIOMETRIC_MISMATCH"

    def __init__(self, attempts_left: int, similarity: float | None = None) -> None:
        super().__init__(
            f"Face not recognised. {attempts_left} attempts left today",
            attempts_left=attempts_left,
            similarity=similarity,
        )
        self.attempts_left = attempts_left
        self.similarity = similarity


# ── Dependencies ────────────────────────────────────────────────────────


class DependencyError(WorktrackError):
    status_code = 503
    code = "DEPENDENCY_ERROR"
    default_detail = "Dependent service unavailable"


class MatcherUnavailable(DependencyError):
    code = "MATCHER_UNAVAILABLE"
    default_detail = "Face recognition service unavailable"


class EnrollmentFailed(DependencyError):
    code = "ENROLLMENT_FAILED"
    default_detail = "Face enrollment failed; partial registrations were rolled back"


class InvalidGeometry(DependencyError):
    status_code = 422
    code = "INVALID_GEOMETRY"
    default_detail = "Invalid coordinates or fence geometry"
