from __future__ import annotations

from datetime import timedelta

from conftest import CENTER_LAT, CENTER_LON, auth_headers, encode, sample_payload, verification_samples
from worktrack.db.base import utcnow
from worktrack.models.enums import Role
from worktrack.services.accounts import new_client, new_staff_user


def _client_headers(client) -> dict[str, str]:
    return auth_headers(f"client:{client.id}")


def _staff_headers(user) -> dict[str, str]:
    return auth_headers(f"staff:{user.id}")


def _start(api, client):
    return api.post(
        "/api/work-sessions/start",
        json={
            "latitude": CENTER_LAT,
            "longitude": CENTER_LON,
            "samples": sample_payload(verification_samples()),
        },
        headers=_client_headers(client),
    )


# ── Auth ────────────────────────────────────────────────────────────────


def test_staff_login_and_me(api, db):
    user = new_staff_user(
        db, email="supervisor@example.com", password="s3cret-pass", full_name="Sam Supervisor", role=Role.SUPERVISOR
    )
    db.commit()

    response = api.post("/api/auth/login", data={"username": "supervisor@example.com", "password": "s3cret-pass"})
    assert response.status_code == 200
    token = response.json()
    assert token["actor_type"] == "STAFF"

    me = api.get("/api/auth/me", headers={"Authorization": f"Bearer {token['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["role"] == "SUPERVISOR"


def test_staff_login_wrong_password(api, db):
    new_staff_user(db, email="officer2@example.com", password="right-pass", full_name="Officer Two")
    db.commit()

    response = api.post("/api/auth/login", data={"username": "officer2@example.com", "password": "wrong"})
    assert response.status_code == 400


def test_client_login(api, db, officer):
    client = new_client(db, full_name="Noa Client", id_number="987654321", password="pin-1234", officer_id=officer.id)
    db.commit()

    response = api.post("/api/auth/client-login", json={"id_number": "987654321", "password": "pin-1234"})
    assert response.status_code == 200
    assert response.json()["actor_type"] == "CLIENT"

    me = api.get("/api/auth/me", headers={"Authorization": f"Bearer {response.json()['access_token']}"})
    assert me.json()["id"] == client.id
    assert me.json()["full_name"] == "Noa Client"


def test_requests_without_token_are_rejected(api):
    response = api.get("/api/work-sessions")
    assert response.status_code == 401


def test_garbage_token_is_rejected(api):
    response = api.get("/api/work-sessions", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


# ── Work sessions ───────────────────────────────────────────────────────


def test_full_session_lifecycle_over_http(api, enrolled_client, officer):
    started = _start(api, enrolled_client)
    assert started.status_code == 201
    body = started.json()
    session_id = body["session"]["id"]
    assert body["session"]["status"] == "active"
    assert body["sample"]["inside_fence"] is True

    location = api.post(
        f"/api/work-sessions/{session_id}/locations",
        json={"latitude": CENTER_LAT + 0.005, "longitude": CENTER_LON, "client_ref": "loc-1"},
        headers=_client_headers(enrolled_client),
    )
    assert location.status_code == 200
    assert location.json()["violation"]["violation_type"] == "exit"

    photo = api.post(
        f"/api/work-sessions/{session_id}/photos",
        json={"photo_type": "process", "image_base64": encode(b"jpeg")},
        headers=_client_headers(enrolled_client),
    )
    assert photo.status_code == 201

    ended = api.post(
        f"/api/work-sessions/{session_id}/end",
        json={"latitude": CENTER_LAT, "longitude": CENTER_LON},
        headers=_client_headers(enrolled_client),
    )
    assert ended.status_code == 200
    assert ended.json()["session"]["status"] == "completed"

    verified = api.post(
        f"/api/work-sessions/{session_id}/verify",
        json={"outcome": "verified", "notes": "ok"},
        headers=_staff_headers(officer),
    )
    assert verified.status_code == 200
    assert verified.json()["session"]["status"] == "verified"

    detail = api.get(f"/api/work-sessions/{session_id}", headers=_staff_headers(officer))
    assert detail.status_code == 200
    assert len(detail.json()["violations"]) == 1
    assert len(detail.json()["photos"]) == 1

    route = api.get(f"/api/work-sessions/{session_id}/route", headers=_client_headers(enrolled_client))
    assert route.status_code == 200
    assert route.json()["sample_count"] == 3


def test_session_times_come_from_the_server(api, enrolled_client):
    far_future = (utcnow() + timedelta(days=100)).isoformat()
    started = api.post(
        "/api/work-sessions/start",
        json={
            "latitude": CENTER_LAT,
            "longitude": CENTER_LON,
            "samples": sample_payload(verification_samples()),
            "started_at": "2020-01-01T00:00:00+00:00",
        },
        headers=_client_headers(enrolled_client),
    )
    assert started.status_code == 201
    session_id = started.json()["session"]["id"]

    ended = api.post(
        f"/api/work-sessions/{session_id}/end",
        json={"latitude": CENTER_LAT, "longitude": CENTER_LON, "ended_at": far_future},
        headers=_client_headers(enrolled_client),
    )
    assert ended.status_code == 200
    session = ended.json()["session"]
    assert not session["start_time"].startswith("2020")
    assert session["hours_worked"] < 0.1


def test_second_start_returns_conflict_payload(api, enrolled_client):
    first = _start(api, enrolled_client)
    second = _start(api, enrolled_client)

    assert second.status_code == 409
    assert second.json()["code"] == "ALREADY_ACTIVE"
    assert second.json()["session_id"] == first.json()["session"]["id"]


def test_mismatch_reports_attempts_left(api, enrolled_client, matcher):
    matcher.reject()
    response = _start(api, enrolled_client)

    assert response.status_code == 401
    assert response.json()["code"] == "BIOMETRIC_MISMATCH"
    assert response.json()["attempts_left"] == 9


def test_locked_client_gets_minutes_remaining(api, db, enrolled_client):
    enrolled_client.lockout_until = utcnow() + timedelta(minutes=20)
    db.commit()

    response = _start(api, enrolled_client)
    assert response.status_code == 423
    assert response.json()["code"] == "LOCKED"
    assert response.json()["minutes_remaining"] == 20


def test_matcher_outage_is_503(api, enrolled_client, matcher):
    matcher.unavailable = True
    response = _start(api, enrolled_client)

    assert response.status_code == 503
    assert response.json()["code"] == "MATCHER_UNAVAILABLE"


def test_staff_cannot_start_a_session(api, officer):
    response = api.post(
        "/api/work-sessions/start",
        json={"latitude": CENTER_LAT, "longitude": CENTER_LON, "samples": []},
        headers=_staff_headers(officer),
    )
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_client_cannot_verify_own_session(api, enrolled_client):
    session_id = _start(api, enrolled_client).json()["session"]["id"]
    response = api.post(
        f"/api/work-sessions/{session_id}/verify",
        json={"outcome": "verified"},
        headers=_client_headers(enrolled_client),
    )
    assert response.status_code == 403


def test_other_officer_cannot_see_session(api, enrolled_client, other_officer):
    session_id = _start(api, enrolled_client).json()["session"]["id"]
    response = api.get(f"/api/work-sessions/{session_id}", headers=_staff_headers(other_officer))
    assert response.status_code == 403


# ── Biometrics ──────────────────────────────────────────────────────────


def test_enrollment_over_http(api, client_row, officer, matcher):
    payload = {
        "samples": [
            {"angle": "frontal", "image_base64": encode(b"face-frontal")},
            {"angle": "left", "image_base64": encode(b"face-left")},
            {"angle": "right", "image_base64": encode(b"face-right")},
        ]
    }
    response = api.post(
        f"/api/biometrics/clients/{client_row.id}/enrollment", json=payload, headers=_staff_headers(officer)
    )
    assert response.status_code == 201
    assert len(response.json()) == 3

    status = api.get(f"/api/biometrics/clients/{client_row.id}/status", headers=_staff_headers(officer))
    assert status.json()["enrolled"] is True

    again = api.post(
        f"/api/biometrics/clients/{client_row.id}/enrollment", json=payload, headers=_staff_headers(officer)
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ENROLLMENT_ALREADY_EXISTS"


def test_verify_missing_angle_names_it(api, enrolled_client):
    samples = sample_payload(verification_samples())
    samples[2]["angle"] = "left"
    response = api.post(
        "/api/biometrics/verify",
        json={"samples": samples},
        headers=_client_headers(enrolled_client),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "MISSING_ANGLE"
    assert response.json()["missing"] == ["right"]


def test_admin_resets_attempts_over_http(api, db, enrolled_client, officer):
    enrolled_client.lockout_until = utcnow() + timedelta(minutes=20)
    db.commit()

    refused = api.post(
        f"/api/biometrics/clients/{enrolled_client.id}/reset-attempts", headers=_staff_headers(officer)
    )
    assert refused.status_code == 403

    admin = new_staff_user(
        db, email="admin@example.com", password="admin-pass", full_name="Ari Admin", role=Role.ADMIN
    )
    db.commit()
    response = api.post(
        f"/api/biometrics/clients/{enrolled_client.id}/reset-attempts", headers=_staff_headers(admin)
    )
    assert response.status_code == 200
    assert response.json()["locked"] is False
    assert response.json()["attempts_left"] == 10

    assert _start(api, enrolled_client).status_code == 201


# ── Geofences ───────────────────────────────────────────────────────────


def test_geofence_check_against_work_location(api, officer, work_location):
    response = api.post(
        "/api/geofences/check",
        json={"latitude": CENTER_LAT + 0.005, "longitude": CENTER_LON, "work_location_id": work_location.id},
        headers=_staff_headers(officer),
    )
    assert response.status_code == 200
    assert response.json()["inside"] is False
    assert response.json()["shape"] == "circle"


def test_geofence_check_with_inline_square(api, officer):
    response = api.post(
        "/api/geofences/check",
        json={
            "latitude": CENTER_LAT,
            "longitude": CENTER_LON,
            "center_latitude": CENTER_LAT,
            "center_longitude": CENTER_LON,
            "size_m": 200,
        },
        headers=_staff_headers(officer),
    )
    assert response.status_code == 200
    assert response.json() == {"inside": True, "distance_m": 0.0, "shape": "square"}


def test_square_bounds_rejects_oversized_square(api, officer):
    response = api.post(
        "/api/geofences/square-bounds",
        json={"center_latitude": CENTER_LAT, "center_longitude": CENTER_LON, "size_m": 5000},
        headers=_staff_headers(officer),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "INVALID_GEOMETRY"


def test_violation_review(api, enrolled_client, officer):
    session_id = _start(api, enrolled_client).json()["session"]["id"]
    api.post(
        f"/api/work-sessions/{session_id}/locations",
        json={"latitude": CENTER_LAT + 0.005, "longitude": CENTER_LON},
        headers=_client_headers(enrolled_client),
    )

    listed = api.get(f"/api/geofences/violations?session_id={session_id}", headers=_staff_headers(officer))
    violation_id = listed.json()[0]["id"]

    reviewed = api.patch(
        f"/api/geofences/violations/{violation_id}",
        json={"reviewer_notes": "Went to buy water"},
        headers=_staff_headers(officer),
    )
    assert reviewed.status_code == 200
    assert reviewed.json()["reviewer_notes"] == "Went to buy water"
    assert reviewed.json()["reviewed_at"] is not None


# ── Sync ────────────────────────────────────────────────────────────────


def test_sync_batch_reports_each_item(api, enrolled_client):
    now = utcnow()
    body = {
        "device_id": "phone-1",
        "operations": [
            {
                "operation": "start_work_session",
                "resource_id": "local-1",
                "client_timestamp": now.isoformat(),
                "data": {
                    "latitude": CENTER_LAT,
                    "longitude": CENTER_LON,
                    "samples": sample_payload(verification_samples()),
                },
            },
            {
                "operation": "record_location",
                "resource_id": "loc-1",
                "client_timestamp": (now + timedelta(minutes=1)).isoformat(),
                "data": {"latitude": CENTER_LAT, "longitude": CENTER_LON, "session_local_id": "local-1"},
            },
            {
                "operation": "record_location",
                "resource_id": "loc-2",
                "client_timestamp": (now + timedelta(minutes=2)).isoformat(),
                "data": {"latitude": CENTER_LAT, "longitude": CENTER_LON, "session_local_id": "unknown"},
            },
        ],
    }

    response = api.post("/api/sync/batch", json=body, headers=_client_headers(enrolled_client))
    assert response.status_code == 200
    results = response.json()["results"]
    assert [item["client_id"] for item in results] == ["local-1", "loc-1", "loc-2"]
    assert [item["success"] for item in results] == [True, True, False]
    assert results[2]["status"] == "pending"
    assert results[2]["error"]
    assert response.json()["summary"]["processed"] == 3

    status = api.get("/api/sync/status", headers=_client_headers(enrolled_client))
    assert status.json()["completed"] == 2
    assert status.json()["pending"] == 1

    replay = api.post("/api/sync/batch", json=body, headers=_client_headers(enrolled_client))
    assert [item["operation_id"] for item in replay.json()["results"]] == [
        item["operation_id"] for item in results
    ]


def test_sync_batch_rejects_empty_batch(api, enrolled_client):
    response = api.post("/api/sync/batch", json={"operations": []}, headers=_client_headers(enrolled_client))
    assert response.status_code == 422


# ── Health ──────────────────────────────────────────────────────────────


def test_healthz(api):
    response = api.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["sync_queue_pending"] == 0


def test_metrics_exposes_prometheus_text(api):
    api.get("/healthz")
    response = api.get("/metrics")
    assert response.status_code == 200
    assert "http_server_requests_total" in response.text
