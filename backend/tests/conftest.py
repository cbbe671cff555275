from __future__ import annotations

import base64
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from worktrack.core.errors import MatcherUnavailable
from worktrack.core.security import create_access_token
from worktrack.core.settings import settings
from worktrack.db.base import Base
from worktrack.db.session import get_db
from worktrack.main import app
from worktrack.models.client import Client
from worktrack.models.enums import FenceShape, Role, SampleAngle
from worktrack.models.user import User
from worktrack.models.work_location import WorkLocation
from worktrack.services.biometrics import Sample, enroll_client
from worktrack.services.matcher import RecognitionResult, get_matcher, subject_for_client

# Work location centre used throughout the tests (Tel Aviv city hall).
CENTER_LAT = 32.0810
CENTER_LON = 34.7806


class FakeMatcher:
    """In-memory stand-in for the recognition service."""

    def __init__(self) -> None:
        self.subjects: dict[str, list[bytes]] = {}
        self.next_result: Optional[RecognitionResult] = None
        self.unavailable = False
        self.fail_register_after: Optional[int] = None
        self.register_calls = 0
        self.recognize_calls = 0
        self.deleted: list[str] = []

    def register(self, subject_id: str, sample: bytes) -> str:
        if self.unavailable or (
            self.fail_register_after is not None and self.register_calls >= self.fail_register_after
        ):
            raise MatcherUnavailable("fake matcher down")
        self.register_calls += 1
        self.subjects.setdefault(subject_id, []).append(sample)
        return f"img-{subject_id}-{self.register_calls}"

    def recognize(self, sample: bytes) -> RecognitionResult:
        if self.unavailable:
            raise MatcherUnavailable("fake matcher down")
        self.recognize_calls += 1
        if self.next_result is not None:
            return self.next_result
        for subject_id, samples in self.subjects.items():
            if sample in samples:
                return RecognitionResult(subject_id=subject_id, similarity=0.97, confidence=0.99)
        return RecognitionResult(subject_id=None, similarity=0.0, confidence=0.99)

    def delete(self, subject_id: str) -> None:
        if self.unavailable:
            raise MatcherUnavailable("fake matcher down")
        self.deleted.append(subject_id)
        self.subjects.pop(subject_id, None)

    def accept(self, client_id: int, similarity: float = 0.97) -> None:
        self.next_result = RecognitionResult(
            subject_id=subject_for_client(client_id),
            similarity=similarity,
            confidence=0.99,
        )

    def reject(self, similarity: float = 0.2) -> None:
        self.next_result = RecognitionResult(subject_id="someone_else", similarity=similarity, confidence=0.99)


def encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def enrollment_samples() -> list[Sample]:
    return [
        Sample(angle=SampleAngle.FRONTAL, image_base64=encode(b"face-frontal")),
        Sample(angle=SampleAngle.LEFT, image_base64=encode(b"face-left")),
        Sample(angle=SampleAngle.RIGHT, image_base64=encode(b"face-right")),
    ]


def verification_samples() -> list[Sample]:
    return [
        Sample(angle=SampleAngle.FRONTAL, image_base64=encode(b"face-frontal")),
        Sample(angle=SampleAngle.LEFT, image_base64=encode(b"live-left")),
        Sample(angle=SampleAngle.RIGHT, image_base64=encode(b"live-right")),
    ]


def sample_payload(samples: list[Sample]) -> list[dict[str, str]]:
    return [{"angle": sample.angle.value, "image_base64": sample.image_base64} for sample in samples]


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "local_timezone", "UTC")
    monkeypatch.setattr(settings, "biometric_similarity_threshold", 0.85)
    monkeypatch.setattr(settings, "biometric_max_attempts", 10)
    monkeypatch.setattr(settings, "biometric_lockout_minutes", 30)
    monkeypatch.setattr(settings, "sync_max_retries", 3)


@pytest.fixture()
def matcher() -> FakeMatcher:
    return FakeMatcher()


@pytest.fixture()
def officer(db) -> User:
    user = User(
        email="officer@example.com",
        hashed_password="x",
        full_name="Dana Officer",
        role=Role.OFFICER,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def other_officer(db) -> User:
    user = User(
        email="other-officer@example.com",
        hashed_password="x",
        full_name="Other Officer",
        role=Role.OFFICER,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def work_location(db) -> WorkLocation:
    location = WorkLocation(
        name="City hall gardens",
        center_latitude=CENTER_LAT,
        center_longitude=CENTER_LON,
        shape=FenceShape.CIRCLE,
        radius_m=100,
        is_active=True,
    )
    db.add(location)
    db.commit()
    return location


@pytest.fixture()
def client_row(db, officer, work_location) -> Client:
    client = Client(
        full_name="Avi Client",
        id_number="123456789",
        hashed_password="x",
        officer_id=officer.id,
        work_location_id=work_location.id,
        assigned_hours=120,
        completed_hours=0,
        is_active=True,
    )
    db.add(client)
    db.commit()
    return client


@pytest.fixture()
def enrolled_client(db, client_row, matcher) -> Client:
    enroll_client(db, client_id=client_row.id, samples=enrollment_samples(), matcher=matcher)
    db.commit()
    return client_row


@pytest.fixture()
def api(db, matcher):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_matcher] = lambda: matcher

    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()


def auth_headers(subject: str) -> dict[str, str]:
    token = create_access_token({"sub": subject})
    return {"Authorization": f"Bearer {token}"}
