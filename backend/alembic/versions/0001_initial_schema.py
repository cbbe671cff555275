"""Initial schema: clients, biometrics, work sessions, geofencing, sync queue.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns persist member names.
ENUMS = {
    "role": ("OFFICER", "SUPERVISOR", "ADMIN"),
    "fence_shape": ("CIRCLE", "SQUARE"),
    "sample_angle": ("FRONTAL", "LEFT", "RIGHT", "ADDITIONAL"),
    "attempt_outcome": ("ACCEPTED", "REJECTED"),
    "work_session_status": ("ACTIVE", "COMPLETED", "VERIFIED", "REJECTED"),
    "violation_type": ("EXIT", "NEVER_ENTERED"),
    "photo_type": ("START", "END", "PROCESS"),
    "actor_type": ("STAFF", "CLIENT"),
    "sync_operation_kind": (
        "START_WORK_SESSION",
        "RECORD_LOCATION",
        "END_WORK_SESSION",
        "UPDATE_WORK_SESSION",
        "UPLOAD_PHOTO",
        "ENROLL_FACE",
    ),
    "sync_resource_type": ("WORK_SESSION", "LOCATION_SAMPLE", "PHOTO", "BIOMETRIC_ENROLLMENT"),
    "sync_status": ("PENDING", "PROCESSING", "COMPLETED", "FAILED", "CONFLICT"),
    "notification_type": (
        "BIOMETRIC_LOCKOUT",
        "GEOFENCE_VIOLATION",
        "SESSION_AWAITING_REVIEW",
        "SESSION_VERIFIED",
        "SESSION_REJECTED",
    ),
    "notification_delivery_status": ("PENDING", "SENT", "FAILED"),
}


def _is_sqlite() -> bool:
    return op.get_bind().dialect.name == "sqlite"


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", _enum("role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "work_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("center_latitude", sa.Float(), nullable=False),
        sa.Column("center_longitude", sa.Float(), nullable=False),
        sa.Column("shape", _enum("fence_shape"), nullable=False),
        sa.Column("radius_m", sa.Float(), nullable=True),
        sa.Column("size_m", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_work_locations"),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("id_number", sa.String(length=32), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("officer_id", sa.Integer(), nullable=True),
        sa.Column("work_location_id", sa.Integer(), nullable=True),
        sa.Column("assigned_hours", sa.Float(), nullable=False),
        sa.Column("completed_hours", sa.Float(), nullable=False),
        sa.Column("face_registered", sa.Boolean(), nullable=False),
        sa.Column("face_registered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("matcher_subject_id", sa.String(length=64), nullable=True),
        sa.Column("lockout_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts_reset_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["officer_id"], ["users.id"], name="fk_clients_officer_id_users"),
        sa.ForeignKeyConstraint(
            ["work_location_id"],
            ["work_locations.id"],
            name="fk_clients_work_location_id_work_locations",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_clients"),
    )
    op.create_index("ix_clients_id_number", "clients", ["id_number"], unique=True)
    op.create_index("ix_clients_officer_id", "clients", ["officer_id"], unique=False)
    op.create_index("ix_clients_work_location_id", "clients", ["work_location_id"], unique=False)

    op.create_table(
        "biometric_enrollments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("angle", _enum("sample_angle"), nullable=False),
        sa.Column("matcher_image_id", sa.String(length=128), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(
            ["client_id"],
            ["clients.id"],
            name="fk_biometric_enrollments_client_id_clients",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_biometric_enrollments"),
    )
    op.create_index("ix_biometric_enrollments_client_id", "biometric_enrollments", ["client_id"], unique=False)

    # work_session_id references work_sessions, created below.
    op.create_table(
        "biometric_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("work_session_id", sa.Integer(), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=True),
        sa.Column("liveness_passed", sa.Boolean(), nullable=False),
        sa.Column("outcome", _enum("attempt_outcome"), nullable=False),
        sa.Column("matched_subject_id", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("device_info", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_biometric_attempts_client_id_clients"),
        sa.PrimaryKeyConstraint("id", name="pk_biometric_attempts"),
    )
    op.create_index("ix_biometric_attempts_client_id", "biometric_attempts", ["client_id"], unique=False)
    op.create_index("ix_biometric_attempts_work_session_id", "biometric_attempts", ["work_session_id"], unique=False)
    op.create_index("ix_biometric_attempts_outcome", "biometric_attempts", ["outcome"], unique=False)

    op.create_table(
        "work_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("work_location_id", sa.Integer(), nullable=True),
        sa.Column("status", _enum("work_session_status"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_latitude", sa.Float(), nullable=False),
        sa.Column("start_longitude", sa.Float(), nullable=False),
        sa.Column("end_latitude", sa.Float(), nullable=True),
        sa.Column("end_longitude", sa.Float(), nullable=True),
        sa.Column("hours_worked", sa.Float(), nullable=True),
        sa.Column("work_description", sa.Text(), nullable=True),
        sa.Column("biometric_attempt_id", sa.Integer(), nullable=True),
        sa.Column("verified_by_user_id", sa.Integer(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_sample_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_work_sessions_client_id_clients"),
        sa.ForeignKeyConstraint(
            ["work_location_id"],
            ["work_locations.id"],
            name="fk_work_sessions_work_location_id_work_locations",
        ),
        sa.ForeignKeyConstraint(
            ["biometric_attempt_id"],
            ["biometric_attempts.id"],
            name="fk_work_sessions_biometric_attempt_id_biometric_attempts",
        ),
        sa.ForeignKeyConstraint(
            ["verified_by_user_id"],
            ["users.id"],
            name="fk_work_sessions_verified_by_user_id_users",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_work_sessions"),
    )
    op.create_index("ix_work_sessions_client_id", "work_sessions", ["client_id"], unique=False)
    op.create_index("ix_work_sessions_work_location_id", "work_sessions", ["work_location_id"], unique=False)
    op.create_index("ix_work_sessions_status", "work_sessions", ["status"], unique=False)
    op.create_index("ix_work_sessions_client_start", "work_sessions", ["client_id", "start_time"], unique=False)
    op.create_index(
        "uq_work_sessions_active_client",
        "work_sessions",
        ["client_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    if not _is_sqlite():
        op.create_foreign_key(
            "fk_biometric_attempts_work_session_id_work_sessions",
            "biometric_attempts",
            "work_sessions",
            ["work_session_id"],
            ["id"],
        )

    op.create_table(
        "location_samples",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_session_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("altitude", sa.Float(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.Column("heading", sa.Float(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("client_ref", sa.String(length=128), nullable=True),
        sa.Column("inside_fence", sa.Boolean(), nullable=True),
        sa.Column("distance_from_center_m", sa.Float(), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(
            ["work_session_id"],
            ["work_sessions.id"],
            name="fk_location_samples_work_session_id_work_sessions",
        ),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_location_samples_client_id_clients"),
        sa.PrimaryKeyConstraint("id", name="pk_location_samples"),
        sa.UniqueConstraint("work_session_id", "client_ref", name="uq_location_samples_session_client_ref"),
    )
    op.create_index("ix_location_samples_client_id", "location_samples", ["client_id"], unique=False)
    op.create_index(
        "ix_location_samples_session_recorded",
        "location_samples",
        ["work_session_id", "recorded_at"],
        unique=False,
    )

    op.create_table(
        "geofence_violations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_session_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("work_location_id", sa.Integer(), nullable=True),
        sa.Column("sample_id", sa.Integer(), nullable=True),
        sa.Column("violation_type", _enum("violation_type"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("distance_from_center_m", sa.Float(), nullable=False),
        sa.Column("reviewer_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["work_session_id"],
            ["work_sessions.id"],
            name="fk_geofence_violations_work_session_id_work_sessions",
        ),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_geofence_violations_client_id_clients"),
        sa.ForeignKeyConstraint(
            ["work_location_id"],
            ["work_locations.id"],
            name="fk_geofence_violations_work_location_id_work_locations",
        ),
        sa.ForeignKeyConstraint(
            ["sample_id"],
            ["location_samples.id"],
            name="fk_geofence_violations_sample_id_location_samples",
        ),
        sa.ForeignKeyConstraint(
            ["reviewed_by_user_id"],
            ["users.id"],
            name="fk_geofence_violations_reviewed_by_user_id_users",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_geofence_violations"),
    )
    op.create_index("ix_geofence_violations_work_session_id", "geofence_violations", ["work_session_id"], unique=False)
    op.create_index("ix_geofence_violations_client_id", "geofence_violations", ["client_id"], unique=False)

    op.create_table(
        "work_session_photos",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("work_session_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("photo_type", _enum("photo_type"), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("taken_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("client_ref", sa.String(length=128), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(
            ["work_session_id"],
            ["work_sessions.id"],
            name="fk_work_session_photos_work_session_id_work_sessions",
        ),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], name="fk_work_session_photos_client_id_clients"),
        sa.PrimaryKeyConstraint("id", name="pk_work_session_photos"),
        sa.UniqueConstraint("work_session_id", "client_ref", name="uq_work_session_photos_session_client_ref"),
    )
    op.create_index("ix_work_session_photos_work_session_id", "work_session_photos", ["work_session_id"], unique=False)
    op.create_index("ix_work_session_photos_client_id", "work_session_photos", ["client_id"], unique=False)

    op.create_table(
        "sync_operations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_type", _enum("actor_type"), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("device_id", sa.String(length=128), nullable=True),
        sa.Column("operation", _enum("sync_operation_kind"), nullable=False),
        sa.Column("resource_type", _enum("sync_resource_type"), nullable=False),
        sa.Column("resource_id", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("client_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("status", _enum("sync_status"), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("force_apply", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("discarded", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("conflict_data", sa.JSON(), nullable=True),
        sa.Column("server_resource_id", sa.Integer(), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_sync_operations"),
    )
    op.create_index("ix_sync_operations_device_id", "sync_operations", ["device_id"], unique=False)
    op.create_index(
        "ix_sync_operations_owner_status",
        "sync_operations",
        ["owner_type", "owner_id", "status"],
        unique=False,
    )
    op.create_index(
        "ix_sync_operations_owner_hash",
        "sync_operations",
        ["owner_type", "owner_id", "request_hash"],
        unique=False,
    )
    op.create_index(
        "ix_sync_operations_logical_key",
        "sync_operations",
        ["owner_type", "owner_id", "operation", "resource_type", "resource_id"],
        unique=False,
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("recipient_type", _enum("actor_type"), nullable=False),
        sa.Column("recipient_id", sa.Integer(), nullable=False),
        sa.Column("type", _enum("notification_type"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("status", _enum("notification_delivery_status"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )
    op.create_index("ix_notifications_recipient", "notifications", ["recipient_type", "recipient_id"], unique=False)
    op.create_index("ix_notifications_type", "notifications", ["type"], unique=False)
    op.create_index("ix_notifications_status", "notifications", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("sync_operations")
    op.drop_table("work_session_photos")
    op.drop_table("geofence_violations")
    op.drop_table("location_samples")
    if not _is_sqlite():
        op.drop_constraint(
            "fk_biometric_attempts_work_session_id_work_sessions",
            "biometric_attempts",
            type_="foreignkey",
        )
    op.drop_table("work_sessions")
    op.drop_table("biometric_attempts")
    op.drop_table("biometric_enrollments")
    op.drop_table("clients")
    op.drop_table("work_locations")
    op.drop_table("users")

    bind = op.get_bind()
    for name, values in reversed(list(ENUMS.items())):
        postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)
