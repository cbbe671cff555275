from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import CENTER_LAT, CENTER_LON
from worktrack.core.errors import InvalidGeometry
from worktrack.db.base import as_utc
from worktrack.models.enums import NotificationType, ViolationType, WorkSessionStatus
from worktrack.models.location import GeofenceViolation, LocationSample
from worktrack.models.notification import Notification
from worktrack.models.work_session import WorkSession
from worktrack.services import geo, geofence

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
OUTSIDE_LAT = CENTER_LAT + 0.005


@pytest.fixture()
def session(db, client_row):
    row = WorkSession(
        client_id=client_row.id,
        work_location_id=client_row.work_location_id,
        status=WorkSessionStatus.ACTIVE,
        start_time=T0,
        start_latitude=CENTER_LAT,
        start_longitude=CENTER_LON,
        modified_at=T0,
    )
    db.add(row)
    db.commit()
    return row


def _sample(db, session, lat, minutes, lon=CENTER_LON):
    sample = LocationSample(
        work_session_id=session.id,
        client_id=session.client_id,
        latitude=lat,
        longitude=lon,
        recorded_at=T0 + timedelta(minutes=minutes),
    )
    db.add(sample)
    evaluation = geofence.evaluate_sample(db, session=session, sample=sample)
    db.commit()
    return evaluation


def test_exit_and_return_produce_one_closed_violation(db, session):
    _sample(db, session, CENTER_LAT, 0)
    opened = _sample(db, session, OUTSIDE_LAT, 5).opened
    assert _sample(db, session, OUTSIDE_LAT, 10).opened is None
    closed = _sample(db, session, CENTER_LAT, 15).closed

    violations = db.query(GeofenceViolation).all()
    assert len(violations) == 1
    violation = violations[0]
    assert violation.id == opened.id == closed.id
    assert violation.violation_type == ViolationType.EXIT
    assert as_utc(violation.started_at) == T0 + timedelta(minutes=5)
    assert as_utc(violation.ended_at) == T0 + timedelta(minutes=15)
    assert violation.distance_from_center_m > 500


def test_first_sample_outside_is_never_entered(db, session):
    evaluation = _sample(db, session, OUTSIDE_LAT, 0)

    assert evaluation.inside is False
    assert evaluation.opened.violation_type == ViolationType.NEVER_ENTERED
    assert evaluation.opened.sample_id is not None


def test_violation_notifies_supervising_officer(db, session, client_row):
    _sample(db, session, OUTSIDE_LAT, 0)

    notice = db.query(Notification).one()
    assert notice.type == NotificationType.GEOFENCE_VIOLATION
    assert notice.recipient_id == client_row.officer_id
    assert notice.payload_json["session_id"] == session.id


def test_two_separate_excursions(db, session):
    for minutes, lat in [(0, CENTER_LAT), (1, OUTSIDE_LAT), (2, CENTER_LAT), (3, OUTSIDE_LAT), (4, CENTER_LAT)]:
        _sample(db, session, lat, minutes)

    violations = db.query(GeofenceViolation).order_by(GeofenceViolation.started_at).all()
    assert [v.violation_type for v in violations] == [ViolationType.EXIT, ViolationType.EXIT]
    assert all(v.ended_at is not None for v in violations)


def test_late_sample_is_stored_without_changing_state(db, session):
    _sample(db, session, CENTER_LAT, 10)
    late = _sample(db, session, OUTSIDE_LAT, 5)

    assert late.inside is False
    assert late.opened is None
    assert db.query(GeofenceViolation).count() == 0
    assert as_utc(session.last_sample_at) == T0 + timedelta(minutes=10)
    assert db.query(LocationSample).count() == 2


def test_close_open_violations_at_session_end(db, session):
    _sample(db, session, CENTER_LAT, 0)
    _sample(db, session, OUTSIDE_LAT, 5)

    end = T0 + timedelta(minutes=30)
    closed = geofence.close_open_violations(db, session=session, at=end)
    db.commit()

    assert len(closed) == 1
    assert as_utc(closed[0].ended_at) == end
    assert geofence.open_violation(db, session.id) is None


def test_session_without_location_skips_evaluation(db, session):
    session.work_location_id = None
    db.commit()
    db.refresh(session)

    evaluation = _sample(db, session, OUTSIDE_LAT, 0)
    assert evaluation.inside is None
    assert db.query(GeofenceViolation).count() == 0


def test_square_fence_from_config():
    fence = geofence.fence_from_config({"centerLat": CENTER_LAT, "centerLon": CENTER_LON, "sizeMeters": 200})

    assert isinstance(fence, geofence.SquareFence)
    assert fence.contains(geo.Point(CENTER_LAT, CENTER_LON))
    assert fence.contains(geo.Point(CENTER_LAT + 85 / 111_000, CENTER_LON))
    assert not fence.contains(geo.Point(CENTER_LAT + 120 / 111_000, CENTER_LON))


def test_circle_fence_from_snake_case_config():
    fence = geofence.fence_from_config({"center_lat": CENTER_LAT, "center_lon": CENTER_LON, "radius_m": 100})

    assert isinstance(fence, geofence.CircleFence)
    result = geofence.classify(fence, geo.Point(OUTSIDE_LAT, CENTER_LON))
    assert result.inside is False
    assert result.distance_m == pytest.approx(556, rel=0.01)


@pytest.mark.parametrize(
    "config",
    [
        {"centerLat": CENTER_LAT, "centerLon": CENTER_LON},
        {"centerLat": CENTER_LAT, "centerLon": CENTER_LON, "radiusMeters": 100, "sizeMeters": 100},
        {"centerLat": CENTER_LAT, "centerLon": CENTER_LON, "radiusMeters": 0},
        {"centerLat": CENTER_LAT, "centerLon": CENTER_LON, "sizeMeters": 20},
        {"centerLon": CENTER_LON, "radiusMeters": 100},
    ],
)
def test_invalid_fence_config(config):
    with pytest.raises(InvalidGeometry):
        geofence.fence_from_config(config)


def test_route_analytics(db, session):
    _sample(db, session, CENTER_LAT, 0)
    _sample(db, session, OUTSIDE_LAT, 10)
    _sample(db, session, CENTER_LAT, 20)
    _sample(db, session, CENTER_LAT, 40)

    analytics = geofence.route_analytics(db, session=session)

    assert analytics.sample_count == 4
    assert analytics.inside_seconds == pytest.approx(30 * 60)
    assert analytics.outside_seconds == pytest.approx(10 * 60)
    assert analytics.compliance_ratio == pytest.approx(0.75)
    assert analytics.violation_count == 1
    assert analytics.path_distance_m == pytest.approx(2 * 556, rel=0.01)
    assert analytics.max_distance_from_center_m == pytest.approx(556, rel=0.01)
