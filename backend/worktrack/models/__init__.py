"""Import all models so SQLAlchemy metadata is fully registered."""

from worktrack.db.base import Base

from worktrack.models.biometric import BiometricAttempt, BiometricEnrollment
from worktrack.models.client import Client
from worktrack.models.enums import (
    ActorType,
    AttemptOutcome,
    ConflictResolution,
    FenceShape,
    NotificationDeliveryStatus,
    NotificationType,
    PhotoType,
    Role,
    SampleAngle,
    SyncOperationKind,
    SyncResourceType,
    SyncStatus,
    VerificationOutcome,
    ViolationType,
    WorkSessionStatus,
)
from worktrack.models.location import GeofenceViolation, LocationSample
from worktrack.models.notification import Notification
from worktrack.models.photo import Photo
from worktrack.models.sync_operation import SyncOperation
from worktrack.models.user import User
from worktrack.models.work_location import WorkLocation
from worktrack.models.work_session import WorkSession

__all__ = [
    "Base",
    "ActorType",
    "AttemptOutcome",
    "BiometricAttempt",
    "BiometricEnrollment",
    "Client",
    "ConflictResolution",
    "FenceShape",
    "GeofenceViolation",
    "LocationSample",
    "Notification",
    "NotificationDeliveryStatus",
    "NotificationType",
    "Photo",
    "PhotoType",
    "Role",
    "SampleAngle",
    "SyncOperation",
    "SyncOperationKind",
    "SyncResourceType",
    "SyncStatus",
    "User",
    "VerificationOutcome",
    "ViolationType",
    "WorkLocation",
    "WorkSession",
    "WorkSessionStatus",
]
