"""Geofence evaluation for work-session location streams.

A violation is a maximal interval of consecutive out-of-fence samples. It
opens on the first out sample after an in sample (``exit``) or on a first
sample that is already out (``never_entered``), and closes on the next in
sample or at session end.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from sqlalchemy.orm import Session

from worktrack.core.actors import Actor, ClientActor, StaffActor, ensure_client_access
from worktrack.core.errors import InvalidGeometry, NotFoundError
from worktrack.core.observability import geofence_violations_total
from worktrack.db.base import as_utc, utcnow
from worktrack.models.client import Client
from worktrack.models.enums import FenceShape, NotificationType, ViolationType
from worktrack.models.location import GeofenceViolation, LocationSample
from worktrack.models.work_location import WorkLocation
from worktrack.models.work_session import WorkSession
from worktrack.services import geo
from worktrack.services.notifications import notify_officer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CircleFence:
    center: geo.Point
    radius_m: float

    def __post_init__(self) -> None:
        geo.validate_point(self.center.latitude, self.center.longitude)
        if not self.radius_m or self.radius_m <= 0:
            raise InvalidGeometry("Circle fence radius must be positive")

    def contains(self, point: geo.Point) -> bool:
        return geo.point_in_circle(point, self.center, self.radius_m)


@dataclass(frozen=True)
class SquareFence:
    center: geo.Point
    size_m: float
    bounds: geo.Bounds = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bounds", geo.square_bounds(self.center, self.size_m))

    def contains(self, point: geo.Point) -> bool:
        return geo.point_in_bounds(point, self.bounds)


Fence = Union[CircleFence, SquareFence]


@dataclass(frozen=True)
class Classification:
    inside: bool
    distance_m: float


def _first(config: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if config.get(key) is not None:
            return config[key]
    return None


def fence_from_config(config: Mapping[str, Any]) -> Fence:
    """Build a fence from ``{centerLat, centerLon, radiusMeters | sizeMeters}``."""
    lat = _first(config, "centerLat", "center_lat", "center_latitude")
    lon = _first(config, "centerLon", "center_lon", "center_longitude")
    if lat is None or lon is None:
        raise InvalidGeometry("Fence config needs a center")
    center = geo.validate_point(lat, lon)

    size = _first(config, "sizeMeters", "size_m", "size_meters")
    radius = _first(config, "radiusMeters", "radius_m", "radius_meters")
    if size is not None and radius is not None:
        raise InvalidGeometry("Fence config must set either radius or size, not both")
    if size is not None:
        return SquareFence(center=center, size_m=float(size))
    if radius is not None:
        return CircleFence(center=center, radius_m=float(radius))
    raise InvalidGeometry("Fence config needs radiusMeters or sizeMeters")


def fence_for_location(location: WorkLocation) -> Fence:
    center = geo.validate_point(location.center_latitude, location.center_longitude)
    if location.shape == FenceShape.SQUARE:
        if location.size_m is None:
            raise InvalidGeometry(f"Work location {location.id} has no square size")
        return SquareFence(center=center, size_m=location.size_m)
    if location.radius_m is None:
        raise InvalidGeometry(f"Work location {location.id} has no radius")
    return CircleFence(center=center, radius_m=location.radius_m)


def classify(fence: Fence, point: geo.Point) -> Classification:
    return Classification(
        inside=fence.contains(point),
        distance_m=round(geo.distance(point, fence.center), 2),
    )


def session_fence(session: WorkSession) -> Optional[Fence]:
    if session.work_location is None or not session.work_location.is_active:
        return None
    return fence_for_location(session.work_location)


def open_violation(db: Session, session_id: int) -> Optional[GeofenceViolation]:
    return (
        db.query(GeofenceViolation)
        .filter(
            GeofenceViolation.work_session_id == session_id,
            GeofenceViolation.ended_at.is_(None),
        )
        .order_by(GeofenceViolation.started_at.desc())
        .first()
    )


@dataclass
class Evaluation:
    inside: Optional[bool] = None
    distance_m: Optional[float] = None
    opened: Optional[GeofenceViolation] = None
    closed: Optional[GeofenceViolation] = None


def evaluate_sample(db: Session, *, session: WorkSession, sample: LocationSample) -> Evaluation:
    """Classify a freshly stored sample and advance the session's fence state."""
    fence = session_fence(session)
    if fence is None:
        return Evaluation()

    if sample.id is None:
        db.flush()
    point = geo.Point(sample.latitude, sample.longitude)
    result = classify(fence, point)
    sample.inside_fence = result.inside
    sample.distance_from_center_m = result.distance_m
    evaluation = Evaluation(inside=result.inside, distance_m=result.distance_m)

    recorded_at = as_utc(sample.recorded_at)
    last_sample_at = as_utc(session.last_sample_at)
    if last_sample_at is not None and recorded_at < last_sample_at:
        # Late arrival from an offline queue: kept for analytics only.
        db.flush()
        return evaluation

    is_first = last_sample_at is None
    session.last_sample_at = recorded_at
    current = None if is_first else open_violation(db, session.id)

    if result.inside:
        if current is not None:
            current.ended_at = recorded_at
            evaluation.closed = current
            logger.info(
                "geofence_violation_closed",
                extra={"session_id": session.id, "violation_type": current.violation_type.value},
            )
    elif is_first or current is None:
        violation_type = ViolationType.NEVER_ENTERED if is_first else ViolationType.EXIT
        violation = GeofenceViolation(
            work_session_id=session.id,
            client_id=session.client_id,
            work_location_id=session.work_location_id,
            violation_type=violation_type,
            started_at=recorded_at,
            latitude=sample.latitude,
            longitude=sample.longitude,
            distance_from_center_m=result.distance_m,
            sample_id=sample.id,
        )
        db.add(violation)
        db.flush()
        evaluation.opened = violation
        _announce(db, session=session, violation=violation)

    db.flush()
    return evaluation


def _announce(db: Session, *, session: WorkSession, violation: GeofenceViolation) -> None:
    geofence_violations_total.labels(type=violation.violation_type.value).inc()
    logger.warning(
        "geofence_violation_opened",
        extra={
            "session_id": session.id,
            "client_id": session.client_id,
            "violation_type": violation.violation_type.value,
        },
    )
    client = session.client
    notify_officer(
        db,
        officer_id=client.officer_id if client else None,
        type=NotificationType.GEOFENCE_VIOLATION,
        title="Geofence violation",
        body=(
            f"{client.full_name if client else 'Client'} is "
            f"{violation.distance_from_center_m:.0f} m from the work location."
        ),
        payload={
            "client_id": session.client_id,
            "session_id": session.id,
            "violation_id": violation.id,
            "violation_type": violation.violation_type.value,
        },
    )


def close_open_violations(db: Session, *, session: WorkSession, at: datetime) -> list[GeofenceViolation]:
    closed = (
        db.query(GeofenceViolation)
        .filter(
            GeofenceViolation.work_session_id == session.id,
            GeofenceViolation.ended_at.is_(None),
        )
        .all()
    )
    for violation in closed:
        violation.ended_at = max(as_utc(at), as_utc(violation.started_at))
    if closed:
        db.flush()
    return closed


# ── Route analytics ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class RouteAnalytics:
    session_id: int
    sample_count: int
    path_distance_m: float
    inside_seconds: float
    outside_seconds: float
    violation_count: int
    max_distance_from_center_m: Optional[float]

    @property
    def compliance_ratio(self) -> Optional[float]:
        total = self.inside_seconds + self.outside_seconds
        if total <= 0:
            return None
        return round(self.inside_seconds / total, 4)


def route_analytics(db: Session, *, session: WorkSession) -> RouteAnalytics:
    samples = (
        db.query(LocationSample)
        .filter(LocationSample.work_session_id == session.id)
        .order_by(LocationSample.recorded_at.asc(), LocationSample.id.asc())
        .all()
    )
    fence = session_fence(session)

    path = 0.0
    inside_seconds = 0.0
    outside_seconds = 0.0
    for previous, current in zip(samples, samples[1:]):
        path += geo.distance(
            geo.Point(previous.latitude, previous.longitude),
            geo.Point(current.latitude, current.longitude),
        )
        elapsed = (as_utc(current.recorded_at) - as_utc(previous.recorded_at)).total_seconds()
        if fence is None:
            continue
        if _sample_inside(fence, previous):
            inside_seconds += elapsed
        else:
            outside_seconds += elapsed

    distances = [s.distance_from_center_m for s in samples if s.distance_from_center_m is not None]
    violation_count = (
        db.query(GeofenceViolation).filter(GeofenceViolation.work_session_id == session.id).count()
    )
    return RouteAnalytics(
        session_id=session.id,
        sample_count=len(samples),
        path_distance_m=round(path, 2),
        inside_seconds=round(inside_seconds, 2),
        outside_seconds=round(outside_seconds, 2),
        violation_count=violation_count,
        max_distance_from_center_m=max(distances) if distances else None,
    )


def _sample_inside(fence: Fence, sample: LocationSample) -> bool:
    if sample.inside_fence is not None:
        return sample.inside_fence
    return fence.contains(geo.Point(sample.latitude, sample.longitude))


# ── Violation review ────────────────────────────────────────────────────


def list_violations(
    db: Session,
    actor: Actor,
    *,
    session_id: Optional[int] = None,
    client_id: Optional[int] = None,
    open_only: bool = False,
    limit: int = 100,
) -> list[GeofenceViolation]:
    query = db.query(GeofenceViolation).join(Client, Client.id == GeofenceViolation.client_id)
    match actor:
        case ClientActor():
            query = query.filter(GeofenceViolation.client_id == actor.client_id)
        case StaffActor() if not actor.sees_all_clients:
            query = query.filter(Client.officer_id == actor.user_id)
        case _:
            pass
    if session_id is not None:
        query = query.filter(GeofenceViolation.work_session_id == session_id)
    if client_id is not None:
        query = query.filter(GeofenceViolation.client_id == client_id)
    if open_only:
        query = query.filter(GeofenceViolation.ended_at.is_(None))
    return query.order_by(GeofenceViolation.started_at.desc()).limit(limit).all()


def review_violation(
    db: Session,
    *,
    violation_id: int,
    reviewer: StaffActor,
    notes: str,
) -> GeofenceViolation:
    violation = db.get(GeofenceViolation, violation_id)
    if violation is None:
        raise NotFoundError("Geofence violation not found")
    client = db.get(Client, violation.client_id)
    ensure_client_access(reviewer, client_id=violation.client_id, officer_id=client.officer_id if client else None)
    violation.reviewer_notes = notes
    violation.reviewed_by_user_id = reviewer.user_id
    violation.reviewed_at = utcnow()
    db.flush()
    return violation
