from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, require_client, require_staff
from worktrack.core.deps import get_current_actor
from worktrack.core.errors import PermissionDenied
from worktrack.db.session import get_db
from worktrack.models.enums import WorkSessionStatus
from worktrack.schemas.work_session import (
    EndSessionRequest,
    GeofenceViolationRead,
    LocationSampleIn,
    LocationSampleRead,
    PhotoRead,
    PhotoUpload,
    RouteAnalyticsRead,
    SessionTransitionRead,
    StartSessionRequest,
    UpdateSessionRequest,
    VerifySessionRequest,
    WorkSessionDetail,
    WorkSessionRead,
)
from worktrack.services import work_sessions
from worktrack.services.biometrics import Sample, decode_image
from worktrack.services.geofence import route_analytics
from worktrack.services.matcher import FaceMatcher, get_matcher

router = APIRouter(prefix="/api/work-sessions", tags=["work-sessions"])


def _transition_read(transition: work_sessions.Transition) -> SessionTransitionRead:
    return SessionTransitionRead(
        session=WorkSessionRead.model_validate(transition.session),
        violation=(
            GeofenceViolationRead.model_validate(transition.violation) if transition.violation is not None else None
        ),
        sample=LocationSampleRead.model_validate(transition.sample) if transition.sample is not None else None,
    )


def _owned_by_client(db: Session, session_id: int, actor: Actor):
    client = require_client(actor)
    session = work_sessions.get_session(db, session_id)
    if session.client_id != client.client_id:
        raise PermissionDenied("Not your work session")
    return session


@router.post("/start", response_model=SessionTransitionRead, status_code=status.HTTP_201_CREATED)
def start_work_session(
    payload: StartSessionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> SessionTransitionRead:
    client = require_client(actor)
    transition = work_sessions.start_session(
        db,
        client_id=client.client_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        samples=[Sample(angle=item.angle, image_base64=item.image_base64) for item in payload.samples],
        matcher=matcher,
        device_info=payload.device_info,
    )
    db.commit()
    return _transition_read(transition)


@router.post("/{session_id}/locations", response_model=SessionTransitionRead)
def record_location(
    session_id: int,
    payload: LocationSampleIn,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SessionTransitionRead:
    _owned_by_client(db, session_id, actor)
    transition = work_sessions.record_location(
        db,
        session_id=session_id,
        location=work_sessions.LocationInput(**payload.model_dump()),
    )
    db.commit()
    return _transition_read(transition)


@router.post("/{session_id}/end", response_model=SessionTransitionRead)
def end_work_session(
    session_id: int,
    payload: EndSessionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SessionTransitionRead:
    _owned_by_client(db, session_id, actor)
    transition = work_sessions.end_session(
        db,
        session_id=session_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )
    db.commit()
    return _transition_read(transition)


@router.post("/{session_id}/verify", response_model=SessionTransitionRead)
def verify_work_session(
    session_id: int,
    payload: VerifySessionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SessionTransitionRead:
    staff = require_staff(actor)
    transition = work_sessions.verify_session(
        db,
        session_id=session_id,
        outcome=payload.outcome,
        verifier=staff,
        notes=payload.notes,
    )
    db.commit()
    return _transition_read(transition)


@router.patch("/{session_id}", response_model=WorkSessionRead)
def update_work_session(
    session_id: int,
    payload: UpdateSessionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> WorkSessionRead:
    work_sessions.get_session_for(db, session_id, actor)
    session = work_sessions.update_session_details(
        db,
        session_id=session_id,
        work_description=payload.work_description,
    )
    db.commit()
    db.refresh(session)
    return WorkSessionRead.model_validate(session)


@router.post("/{session_id}/photos", response_model=PhotoRead, status_code=status.HTTP_201_CREATED)
def upload_photo(
    session_id: int,
    payload: PhotoUpload,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PhotoRead:
    _owned_by_client(db, session_id, actor)
    photo = work_sessions.attach_photo(
        db,
        session_id=session_id,
        photo_type=payload.photo_type,
        content=decode_image(payload.image_base64, label="photo"),
        latitude=payload.latitude,
        longitude=payload.longitude,
        taken_at=payload.taken_at,
        client_ref=payload.client_ref,
    )
    db.commit()
    db.refresh(photo)
    return PhotoRead.model_validate(photo)


@router.get("", response_model=List[WorkSessionRead])
def list_work_sessions(
    client_id: Optional[int] = Query(None),
    status_filter: Optional[WorkSessionStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[WorkSessionRead]:
    sessions = work_sessions.list_sessions(db, actor, client_id=client_id, status=status_filter, limit=limit)
    return [WorkSessionRead.model_validate(session) for session in sessions]


@router.get("/{session_id}", response_model=WorkSessionDetail)
def get_work_session(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> WorkSessionDetail:
    session = work_sessions.get_session_for(db, session_id, actor)
    return WorkSessionDetail.model_validate(session)


@router.get("/{session_id}/route", response_model=RouteAnalyticsRead)
def get_route(
    session_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> RouteAnalyticsRead:
    session = work_sessions.get_session_for(db, session_id, actor)
    return RouteAnalyticsRead.model_validate(route_analytics(db, session=session))
