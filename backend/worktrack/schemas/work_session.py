"""Schemas for work session endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from worktrack.models.enums import PhotoType, VerificationOutcome, ViolationType, WorkSessionStatus
from worktrack.schemas.base import ORMModel
from worktrack.schemas.biometric import BiometricSampleIn


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class StartSessionRequest(Coordinates):
    samples: List[BiometricSampleIn]
    device_info: Optional[dict] = None


class LocationSampleIn(Coordinates):
    recorded_at: Optional[datetime] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    speed: Optional[float] = None
    heading: Optional[float] = None
    client_ref: Optional[str] = Field(default=None, max_length=128)


class EndSessionRequest(Coordinates):
    pass


class VerifySessionRequest(BaseModel):
    outcome: VerificationOutcome
    notes: Optional[str] = None


class UpdateSessionRequest(BaseModel):
    work_description: Optional[str] = None


class PhotoUpload(BaseModel):
    photo_type: PhotoType
    image_base64: str = Field(min_length=1)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    taken_at: Optional[datetime] = None
    client_ref: Optional[str] = Field(default=None, max_length=128)


class GeofenceViolationRead(ORMModel):
    id: int
    work_session_id: int
    client_id: int
    violation_type: ViolationType
    started_at: datetime
    ended_at: Optional[datetime] = None
    latitude: float
    longitude: float
    distance_from_center_m: float
    reviewer_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class LocationSampleRead(ORMModel):
    id: int
    work_session_id: int
    latitude: float
    longitude: float
    recorded_at: datetime
    inside_fence: Optional[bool] = None
    distance_from_center_m: Optional[float] = None
    client_ref: Optional[str] = None


class PhotoRead(ORMModel):
    id: int
    work_session_id: int
    photo_type: PhotoType
    file_size: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    taken_at: datetime


class WorkSessionRead(ORMModel):
    id: int
    client_id: int
    work_location_id: Optional[int] = None
    status: WorkSessionStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    start_latitude: float
    start_longitude: float
    end_latitude: Optional[float] = None
    end_longitude: Optional[float] = None
    hours_worked: Optional[float] = None
    work_description: Optional[str] = None
    biometric_attempt_id: Optional[int] = None
    verified_by_user_id: Optional[int] = None
    verification_notes: Optional[str] = None
    verified_at: Optional[datetime] = None


class WorkSessionDetail(WorkSessionRead):
    violations: List[GeofenceViolationRead] = []
    photos: List[PhotoRead] = []


class SessionTransitionRead(BaseModel):
    session: WorkSessionRead
    violation: Optional[GeofenceViolationRead] = None
    sample: Optional[LocationSampleRead] = None


class RouteAnalyticsRead(ORMModel):
    session_id: int
    sample_count: int
    path_distance_m: float
    inside_seconds: float
    outside_seconds: float
    violation_count: int
    max_distance_from_center_m: Optional[float] = None
    compliance_ratio: Optional[float] = None
