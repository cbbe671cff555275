from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from worktrack.models.enums import AttemptOutcome, SampleAngle
from worktrack.schemas.base import ORMModel


class BiometricSampleIn(BaseModel):
    angle: SampleAngle
    image_base64: str = Field(min_length=1)


class EnrollmentRequest(BaseModel):
    samples: List[BiometricSampleIn]


class VerificationRequest(BaseModel):
    samples: List[BiometricSampleIn]
    device_info: Optional[dict] = None


class EnrollmentRead(ORMModel):
    id: int
    client_id: int
    angle: SampleAngle
    matcher_image_id: str
    is_primary: bool
    created_at: datetime


class EnrollmentStatusRead(ORMModel):
    client_id: int
    enrolled: bool
    enrolled_at: Optional[datetime] = None
    sample_count: int
    locked: bool
    lockout_until: Optional[datetime] = None
    minutes_remaining: int
    failed_attempts_today: int
    attempts_left: int


class AttemptRead(ORMModel):
    id: int
    client_id: int
    work_session_id: Optional[int] = None
    sequence_number: int
    similarity_score: Optional[float] = None
    liveness_passed: bool
    outcome: AttemptOutcome
    created_at: datetime
