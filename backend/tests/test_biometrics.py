from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import encode, enrollment_samples, verification_samples
from worktrack.core.actors import StaffActor
from worktrack.core.errors import (
    AttemptsExhausted,
    BiometricMismatch,
    EnrollmentAlreadyExists,
    EnrollmentFailed,
    InsufficientSamples,
    InvalidSample,
    Locked,
    MatcherUnavailable,
    MissingAngle,
    NotEnrolled,
    PermissionDenied,
)
from worktrack.db.base import as_utc, utcnow
from worktrack.models.biometric import BiometricAttempt, BiometricEnrollment
from worktrack.models.enums import AttemptOutcome, NotificationType, Role, SampleAngle
from worktrack.models.notification import Notification
from worktrack.services import biometrics
from worktrack.services.biometrics import Sample
from worktrack.services.matcher import subject_for_client


def _attempt_count(db, client_id: int) -> int:
    return db.query(BiometricAttempt).filter(BiometricAttempt.client_id == client_id).count()


def _fail(db, client, matcher):
    matcher.reject()
    with pytest.raises(BiometricMismatch) as excinfo:
        biometrics.verify_client(db, client_id=client.id, samples=verification_samples(), matcher=matcher)
    return excinfo.value


# ── Enrollment ──────────────────────────────────────────────────────────


def test_enroll_registers_every_sample_and_marks_frontal_primary(db, client_row, matcher):
    rows = biometrics.enroll_client(db, client_id=client_row.id, samples=enrollment_samples(), matcher=matcher)
    db.commit()

    assert len(rows) == 3
    assert [row.angle for row in rows if row.is_primary] == [SampleAngle.FRONTAL]
    assert client_row.face_registered is True
    assert client_row.matcher_subject_id == subject_for_client(client_row.id)
    assert len(matcher.subjects[subject_for_client(client_row.id)]) == 3


def test_enroll_twice_is_refused(db, enrolled_client, matcher):
    with pytest.raises(EnrollmentAlreadyExists):
        biometrics.enroll_client(db, client_id=enrolled_client.id, samples=enrollment_samples(), matcher=matcher)


@pytest.mark.parametrize("count", [2, 6])
def test_enroll_sample_count_bounds(db, client_row, matcher, count):
    samples = [Sample(angle=SampleAngle.FRONTAL, image_base64=encode(f"img{i}".encode())) for i in range(count)]
    with pytest.raises(InsufficientSamples):
        biometrics.enroll_client(db, client_id=client_row.id, samples=samples, matcher=matcher)
    assert matcher.register_calls == 0


def test_enroll_requires_frontal(db, client_row, matcher):
    samples = [
        Sample(angle=SampleAngle.LEFT, image_base64=encode(b"l")),
        Sample(angle=SampleAngle.RIGHT, image_base64=encode(b"r")),
        Sample(angle=SampleAngle.ADDITIONAL, image_base64=encode(b"a")),
    ]
    with pytest.raises(MissingAngle):
        biometrics.enroll_client(db, client_id=client_row.id, samples=samples, matcher=matcher)


def test_enroll_failure_compensates_partial_registration(db, client_row, matcher):
    matcher.fail_register_after = 1

    with pytest.raises(EnrollmentFailed):
        biometrics.enroll_client(db, client_id=client_row.id, samples=enrollment_samples(), matcher=matcher)
    db.rollback()

    assert matcher.deleted == [subject_for_client(client_row.id)]
    assert subject_for_client(client_row.id) not in matcher.subjects
    assert db.query(BiometricEnrollment).count() == 0
    db.refresh(client_row)
    assert client_row.face_registered is False


def test_delete_enrollment_allows_reenrollment(db, enrolled_client, matcher):
    biometrics.delete_enrollment(db, client_id=enrolled_client.id, matcher=matcher)
    db.commit()

    assert db.query(BiometricEnrollment).filter_by(client_id=enrolled_client.id).count() == 0
    assert enrolled_client.face_registered is False

    biometrics.enroll_client(db, client_id=enrolled_client.id, samples=enrollment_samples(), matcher=matcher)
    db.commit()
    assert enrolled_client.face_registered is True


def test_delete_enrollment_when_not_enrolled(db, client_row, matcher):
    with pytest.raises(NotEnrolled):
        biometrics.delete_enrollment(db, client_id=client_row.id, matcher=matcher)


# ── Verification ────────────────────────────────────────────────────────


def test_verify_not_enrolled(db, client_row, matcher):
    with pytest.raises(NotEnrolled):
        biometrics.verify_client(db, client_id=client_row.id, samples=verification_samples(), matcher=matcher)
    assert matcher.recognize_calls == 0


def test_verify_accepts_matching_face(db, enrolled_client, matcher):
    attempt = biometrics.verify_client(
        db,
        client_id=enrolled_client.id,
        samples=verification_samples(),
        matcher=matcher,
    )
    db.commit()

    assert attempt.outcome == AttemptOutcome.ACCEPTED
    assert attempt.sequence_number == 1
    assert attempt.liveness_passed is True
    assert attempt.similarity_score == pytest.approx(0.97)


def test_verify_rejects_similarity_below_threshold(db, enrolled_client, matcher):
    matcher.accept(enrolled_client.id, similarity=0.84)
    with pytest.raises(BiometricMismatch) as excinfo:
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)
    error = excinfo.value

    assert error.attempts_left == 9
    attempt = db.query(BiometricAttempt).one()
    assert attempt.outcome == AttemptOutcome.REJECTED


def test_verify_rejects_other_subject_even_with_high_similarity(db, enrolled_client, matcher):
    matcher.reject(similarity=0.99)
    with pytest.raises(BiometricMismatch):
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)


def test_verify_missing_angle_fails_before_matcher(db, enrolled_client, matcher):
    samples = [
        Sample(angle=SampleAngle.FRONTAL, image_base64=encode(b"face-frontal")),
        Sample(angle=SampleAngle.LEFT, image_base64=encode(b"l")),
        Sample(angle=SampleAngle.LEFT, image_base64=encode(b"l2")),
    ]
    with pytest.raises(MissingAngle) as excinfo:
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=samples, matcher=matcher)

    assert excinfo.value.extra["missing"] == ["right"]
    assert matcher.recognize_calls == 0
    assert _attempt_count(db, enrolled_client.id) == 0


def test_verify_wrong_sample_count(db, enrolled_client, matcher):
    with pytest.raises(InsufficientSamples):
        biometrics.verify_client(
            db,
            client_id=enrolled_client.id,
            samples=verification_samples()[:2],
            matcher=matcher,
        )
    assert _attempt_count(db, enrolled_client.id) == 0


def test_verify_undecodable_sample(db, enrolled_client, matcher):
    samples = verification_samples()
    samples[1] = Sample(angle=SampleAngle.LEFT, image_base64="***not base64***")
    with pytest.raises(InvalidSample):
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=samples, matcher=matcher)
    assert matcher.recognize_calls == 0


def test_matcher_outage_leaves_no_attempt(db, enrolled_client, matcher):
    matcher.unavailable = True
    with pytest.raises(MatcherUnavailable):
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)
    db.rollback()

    assert _attempt_count(db, enrolled_client.id) == 0
    db.refresh(enrolled_client)
    assert enrolled_client.lockout_until is None


def test_ten_failures_then_lockout(db, enrolled_client, matcher):
    for expected_left in range(9, -1, -1):
        error = _fail(db, enrolled_client, matcher)
        assert error.attempts_left == expected_left
    assert _attempt_count(db, enrolled_client.id) == 10

    before = utcnow()
    with pytest.raises(AttemptsExhausted) as excinfo:
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)
    assert excinfo.value.minutes_remaining == 30
    assert matcher.recognize_calls == 10

    db.refresh(enrolled_client)
    lockout_until = as_utc(enrolled_client.lockout_until)
    assert lockout_until >= before + timedelta(minutes=30)
    assert _attempt_count(db, enrolled_client.id) == 10

    notice = db.query(Notification).filter(Notification.type == NotificationType.BIOMETRIC_LOCKOUT).one()
    assert notice.recipient_id == enrolled_client.officer_id


def test_locked_client_is_refused_before_sample_validation(db, enrolled_client, matcher):
    enrolled_client.lockout_until = utcnow() + timedelta(minutes=12, seconds=5)
    db.commit()

    with pytest.raises(Locked) as excinfo:
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=[], matcher=matcher)

    assert excinfo.value.minutes_remaining == 13
    assert excinfo.value.to_payload()["minutes_remaining"] == 13
    assert matcher.recognize_calls == 0


def test_success_resets_failed_counter(db, enrolled_client, matcher):
    for _ in range(9):
        _fail(db, enrolled_client, matcher)

    matcher.accept(enrolled_client.id)
    biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)
    db.commit()

    window = biometrics.attempt_window(db, enrolled_client.id)
    assert window.failed == 0
    assert window.attempts_left == 10
    assert window.attempts_today == 10

    error = _fail(db, enrolled_client, matcher)
    assert error.attempts_left == 9


def test_expired_lockout_is_cleared_by_success(db, enrolled_client, matcher):
    enrolled_client.lockout_until = utcnow() - timedelta(minutes=1)
    db.commit()

    matcher.accept(enrolled_client.id)
    biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)
    db.commit()

    db.refresh(enrolled_client)
    assert enrolled_client.lockout_until is None


def test_attempts_from_previous_day_do_not_count(db, enrolled_client, matcher):
    yesterday = utcnow() - timedelta(days=1, hours=1)
    for number in range(1, 11):
        db.add(
            BiometricAttempt(
                client_id=enrolled_client.id,
                sequence_number=number,
                similarity_score=0.1,
                liveness_passed=True,
                outcome=AttemptOutcome.REJECTED,
                created_at=yesterday,
            )
        )
    db.commit()

    attempt = biometrics.verify_client(
        db,
        client_id=enrolled_client.id,
        samples=verification_samples(),
        matcher=matcher,
    )
    assert attempt.outcome == AttemptOutcome.ACCEPTED
    assert attempt.sequence_number == 1


def test_admin_reset_lifts_lockout_and_zeroes_failures(db, enrolled_client, matcher):
    for _ in range(10):
        _fail(db, enrolled_client, matcher)
    with pytest.raises(AttemptsExhausted):
        biometrics.verify_client(db, client_id=enrolled_client.id, samples=verification_samples(), matcher=matcher)

    # Once the lockout expires, the day's failures alone would lock the client again.
    enrolled_client.lockout_until = utcnow() - timedelta(minutes=1)
    db.commit()
    assert biometrics.attempt_window(db, enrolled_client.id).exhausted

    admin = StaffActor(user_id=999, role=Role.ADMIN)
    biometrics.reset_attempts(db, client_id=enrolled_client.id, admin=admin)
    db.commit()

    db.refresh(enrolled_client)
    assert enrolled_client.lockout_until is None
    window = biometrics.attempt_window(db, enrolled_client.id)
    assert window.failed == 0
    assert window.attempts_left == 10
    assert window.attempts_today == 10

    error = _fail(db, enrolled_client, matcher)
    assert error.attempts_left == 9
    assert _attempt_count(db, enrolled_client.id) == 11


@pytest.mark.parametrize("role", [Role.OFFICER, Role.SUPERVISOR])
def test_only_admins_reset_attempts(db, enrolled_client, role):
    enrolled_client.lockout_until = utcnow() + timedelta(minutes=10)
    db.commit()

    with pytest.raises(PermissionDenied):
        biometrics.reset_attempts(db, client_id=enrolled_client.id, admin=StaffActor(user_id=1, role=role))

    db.refresh(enrolled_client)
    assert enrolled_client.lockout_until is not None
    assert enrolled_client.attempts_reset_at is None


def test_enrollment_status_reports_lockout(db, enrolled_client, matcher):
    enrolled_client.lockout_until = utcnow() + timedelta(minutes=5)
    db.commit()

    status = biometrics.enrollment_status(db, client=enrolled_client)
    assert status.enrolled is True
    assert status.sample_count == 3
    assert status.locked is True
    assert status.minutes_remaining == 5


def test_samples_from_payload_accepts_data_urls():
    samples = biometrics.samples_from_payload(
        [{"angle": "FRONTAL", "image_base64": "data:image/jpeg;base64," + encode(b"abc")}]
    )
    assert samples[0].angle == SampleAngle.FRONTAL
    assert samples[0].data == b"abc"


def test_samples_from_payload_rejects_unknown_angle():
    with pytest.raises(InvalidSample):
        biometrics.samples_from_payload([{"angle": "upside-down", "image_base64": encode(b"x")}])
