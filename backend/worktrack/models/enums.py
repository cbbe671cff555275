from __future__ import annotations

import enum


class Role(str, enum.Enum):
    OFFICER = "OFFICER"
    SUPERVISOR = "SUPERVISOR"
    ADMIN = "ADMIN"


class ActorType(str, enum.Enum):
    STAFF = "STAFF"
    CLIENT = "CLIENT"


class FenceShape(str, enum.Enum):
    CIRCLE = "circle"
    SQUARE = "square"


class SampleAngle(str, enum.Enum):
    FRONTAL = "frontal"
    LEFT = "left"
    RIGHT = "right"
    ADDITIONAL = "additional"


class AttemptOutcome(str, enum.Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class WorkSessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    VERIFIED = "verified"
    REJECTED = "rejected"


class VerificationOutcome(str, enum.Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"


class ViolationType(str, enum.Enum):
    EXIT = "exit"
    NEVER_ENTERED = "never_entered"


class PhotoType(str, enum.Enum):
    START = "start"
    END = "end"
    PROCESS = "process"


class SyncOperationKind(str, enum.Enum):
    START_WORK_SESSION = "start_work_session"
    RECORD_LOCATION = "record_location"
    END_WORK_SESSION = "end_work_session"
    UPDATE_WORK_SESSION = "update_work_session"
    UPLOAD_PHOTO = "upload_photo"
    ENROLL_FACE = "enroll_face"


class SyncResourceType(str, enum.Enum):
    WORK_SESSION = "work_session"
    LOCATION_SAMPLE = "location_sample"
    PHOTO = "photo"
    BIOMETRIC_ENROLLMENT = "biometric_enrollment"


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CONFLICT = "conflict"


class ConflictResolution(str, enum.Enum):
    USE_SERVER = "use_server"
    USE_CLIENT = "use_client"
    DISCARD = "discard"


class NotificationType(str, enum.Enum):
    BIOMETRIC_LOCKOUT = "BIOMETRIC_LOCKOUT"
    GEOFENCE_VIOLATION = "GEOFENCE_VIOLATION"
    SESSION_AWAITING_REVIEW = "SESSION_AWAITING_REVIEW"
    SESSION_VERIFIED = "SESSION_VERIFIED"
    SESSION_REJECTED = "SESSION_REJECTED"


class NotificationDeliveryStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
