from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from worktrack.schemas.work_session import Coordinates


class GeofenceCheckRequest(Coordinates):
    work_location_id: Optional[int] = None
    center_latitude: Optional[float] = None
    center_longitude: Optional[float] = None
    radius_m: Optional[float] = Field(default=None, gt=0)
    size_m: Optional[float] = None


class GeofenceCheckRead(BaseModel):
    inside: bool
    distance_m: float
    shape: str


class SquareBoundsRequest(BaseModel):
    center_latitude: float
    center_longitude: float
    size_m: float


class SquareBoundsRead(BaseModel):
    north: float
    south: float
    east: float
    west: float


class ViolationReview(BaseModel):
    reviewer_notes: str = Field(min_length=1)
