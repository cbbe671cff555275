"""Face enrollment (staff) and standalone verification (client)."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ensure_client_access, require_client, require_staff
from worktrack.core.deps import get_current_actor
from worktrack.core.errors import NotFoundError
from worktrack.db.session import get_db
from worktrack.models.client import Client
from worktrack.schemas.biometric import (
    AttemptRead,
    EnrollmentRead,
    EnrollmentRequest,
    EnrollmentStatusRead,
    VerificationRequest,
)
from worktrack.services import biometrics
from worktrack.services.matcher import FaceMatcher, get_matcher

router = APIRouter(prefix="/api/biometrics", tags=["biometrics"])


def _client_for(db: Session, client_id: int, actor: Actor) -> Client:
    client = db.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")
    ensure_client_access(actor, client_id=client.id, officer_id=client.officer_id)
    return client


def _samples(payload) -> list[biometrics.Sample]:
    return [biometrics.Sample(angle=item.angle, image_base64=item.image_base64) for item in payload.samples]


@router.post(
    "/clients/{client_id}/enrollment",
    response_model=List[EnrollmentRead],
    status_code=status.HTTP_201_CREATED,
)
def enroll(
    client_id: int,
    payload: EnrollmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> List[EnrollmentRead]:
    require_staff(actor)
    _client_for(db, client_id, actor)
    rows = biometrics.enroll_client(db, client_id=client_id, samples=_samples(payload), matcher=matcher)
    db.commit()
    return [EnrollmentRead.model_validate(row) for row in rows]


@router.delete("/clients/{client_id}/enrollment", status_code=status.HTTP_204_NO_CONTENT)
def delete_enrollment(
    client_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> None:
    require_staff(actor)
    _client_for(db, client_id, actor)
    biometrics.delete_enrollment(db, client_id=client_id, matcher=matcher)
    db.commit()


@router.get("/clients/{client_id}/status", response_model=EnrollmentStatusRead)
def enrollment_status(
    client_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> EnrollmentStatusRead:
    client = _client_for(db, client_id, actor)
    return EnrollmentStatusRead.model_validate(biometrics.enrollment_status(db, client=client))


@router.post("/clients/{client_id}/reset-attempts", response_model=EnrollmentStatusRead)
def reset_attempts(
    client_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> EnrollmentStatusRead:
    admin = require_staff(actor)
    client = biometrics.reset_attempts(db, client_id=client_id, admin=admin)
    db.commit()
    return EnrollmentStatusRead.model_validate(biometrics.enrollment_status(db, client=client))


@router.get("/clients/{client_id}/attempts", response_model=List[AttemptRead])
def list_attempts(
    client_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> List[AttemptRead]:
    _client_for(db, client_id, actor)
    attempts = biometrics.list_attempts(db, client_id=client_id, limit=limit)
    return [AttemptRead.model_validate(attempt) for attempt in attempts]


@router.post("/verify", response_model=AttemptRead)
def verify(
    payload: VerificationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    matcher: FaceMatcher = Depends(get_matcher),
) -> AttemptRead:
    client = require_client(actor)
    attempt = biometrics.verify_client(
        db,
        client_id=client.client_id,
        samples=_samples(payload),
        matcher=matcher,
        device_info=payload.device_info,
    )
    db.commit()
    db.refresh(attempt)
    return AttemptRead.model_validate(attempt)
