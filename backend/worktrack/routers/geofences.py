from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, require_staff
from worktrack.core.deps import get_current_actor
from worktrack.core.errors import NotFoundError
from worktrack.db.session import get_db
from worktrack.models.enums import FenceShape
from worktrack.models.work_location import WorkLocation
from worktrack.schemas.geofence import (
    GeofenceCheckRead,
    GeofenceCheckRequest,
    SquareBoundsRead,
    SquareBoundsRequest,
    ViolationReview,
)
from worktrack.schemas.work_session import GeofenceViolationRead
from worktrack.services import geo, geofence

router = APIRouter(prefix="/api/geofences", tags=["geofences"])


@router.post("/check", response_model=GeofenceCheckRead)
def check_point(
    payload: GeofenceCheckRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> GeofenceCheckRead:
    if payload.work_location_id is not None:
        location = db.get(WorkLocation, payload.work_location_id)
        if location is None:
            raise NotFoundError("Work location not found")
        fence = geofence.fence_for_location(location)
    else:
        fence = geofence.fence_from_config(payload.model_dump(exclude={"latitude", "longitude"}))

    result = geofence.classify(fence, geo.validate_point(payload.latitude, payload.longitude))
    shape = FenceShape.SQUARE if isinstance(fence, geofence.SquareFence) else FenceShape.CIRCLE
    return GeofenceCheckRead(inside=result.inside, distance_m=result.distance_m, shape=shape.value)


@router.post("/square-bounds", response_model=SquareBoundsRead)
def square_bounds(
    payload: SquareBoundsRequest,
    actor: Actor = Depends(get_current_actor),
) -> SquareBoundsRead:
    center = geo.validate_point(payload.center_latitude, payload.center_longitude)
    bounds = geo.square_bounds(center, payload.size_m)
    return SquareBoundsRead(north=bounds.north, south=bounds.south, east=bounds.east, west=bounds.west)


@router.get("/violations", response_model=List[GeofenceViolationRead])
def list_violations(
    session_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    open_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[GeofenceViolationRead]:
    violations = geofence.list_violations(
        db,
        actor,
        session_id=session_id,
        client_id=client_id,
        open_only=open_only,
        limit=limit,
    )
    return [GeofenceViolationRead.model_validate(violation) for violation in violations]


@router.patch("/violations/{violation_id}", response_model=GeofenceViolationRead)
def review_violation(
    violation_id: int,
    payload: ViolationReview,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> GeofenceViolationRead:
    staff = require_staff(actor)
    violation = geofence.review_violation(
        db,
        violation_id=violation_id,
        reviewer=staff,
        notes=payload.reviewer_notes,
    )
    db.commit()
    db.refresh(violation)
    return GeofenceViolationRead.model_validate(violation)
