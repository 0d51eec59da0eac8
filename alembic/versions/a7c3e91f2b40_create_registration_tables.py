"""create alumni registration tables

Revision ID: a7c3e91f2b40
Revises:
Create Date: 2026-10-12 09:00:00.000000

Creates:
1. alumni_registrations with one unique constraint per dedup-sensitive field
   (ID/passport, staff number, email, mobile pair, LinkedIn profile). Values
   are stored normalized, and NULLs never collide.
2. registration_audit_log (append-only)
3. email_logs (one row per delivery attempt)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a7c3e91f2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

registration_status = postgresql.ENUM(
    "PENDING", "APPROVED", "REJECTED", "ACTIVE", name="registration_status", create_type=False
)
audit_action = postgresql.ENUM(
    "CREATED",
    "AUTO_APPROVED",
    "AUTO_REJECTED",
    "MANUAL_REVIEW_REQUIRED",
    "MANUALLY_APPROVED",
    "MANUALLY_REJECTED",
    "EMAIL_VERIFIED",
    name="audit_action",
    create_type=False,
)
notification_type = postgresql.ENUM(
    "CONFIRMATION", "APPROVAL", "REJECTION", name="notification_type", create_type=False
)
email_status = postgresql.ENUM("SENT", "FAILED", name="email_status", create_type=False)


def _created_at() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
    ]


def upgrade() -> None:
    """Create registration, audit and email log tables."""
    bind = op.get_bind()
    for enum in (registration_status, audit_action, notification_type, email_status):
        enum.create(bind, checkfirst=True)

    op.create_table(
        "alumni_registrations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        # Identity
        sa.Column("id_or_passport", sa.String(length=50), nullable=False),
        sa.Column("staff_number", sa.String(length=20), nullable=True),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("mobile_country_code", sa.String(length=5), nullable=True),
        sa.Column("mobile_number", sa.String(length=20), nullable=True),
        sa.Column("professional_network_handle", sa.String(length=500), nullable=True),
        # Profile
        sa.Column("current_country_code", sa.String(length=2), nullable=True),
        sa.Column("current_city", sa.String(length=100), nullable=True),
        sa.Column("current_employer", sa.String(length=200), nullable=True),
        sa.Column("current_job_title", sa.String(length=200), nullable=True),
        sa.Column("industry", sa.String(length=100), nullable=True),
        sa.Column("qualifications_attained", postgresql.JSON(), nullable=False),
        sa.Column("engagement_preferences", postgresql.JSON(), nullable=False),
        sa.Column("consent_given", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("consent_given_at", sa.DateTime(timezone=True), nullable=True),
        # Workflow
        sa.Column("status", registration_status, nullable=False, server_default="PENDING"),
        sa.Column("requires_manual_review", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("manual_review_reason", sa.Text(), nullable=True),
        sa.Column("manually_reviewed", sa.Boolean(), nullable=False, server_default="false"),
        # Identity verification
        sa.Column("verification_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_verification_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_verification_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("name_similarity_score", sa.Integer(), nullable=True),
        sa.Column("identity_staff_name", sa.String(length=200), nullable=True),
        sa.Column("identity_department", sa.String(length=200), nullable=True),
        sa.Column("identity_exit_date", sa.Date(), nullable=True),
        # Notification guards
        sa.Column("confirmation_email_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("confirmation_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_email_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("approval_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_email_sent", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("rejection_email_sent_at", sa.DateTime(timezone=True), nullable=True),
        # Email verification
        sa.Column("verification_token_hash", sa.String(length=64), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        # Decision
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=255), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        # Optimistic concurrency
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_created_at(),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id_or_passport", name="uq_alumni_registrations_id_or_passport"),
        sa.UniqueConstraint("staff_number", name="uq_alumni_registrations_staff_number"),
        sa.UniqueConstraint("email", name="uq_alumni_registrations_email"),
        sa.UniqueConstraint(
            "mobile_country_code", "mobile_number", name="uq_alumni_registrations_mobile"
        ),
        sa.UniqueConstraint(
            "professional_network_handle",
            name="uq_alumni_registrations_professional_network_handle",
        ),
    )
    op.create_index("ix_alumni_registrations_status", "alumni_registrations", ["status"])
    op.create_index(
        "ix_alumni_registrations_due",
        "alumni_registrations",
        ["status", "requires_manual_review", "next_verification_at"],
    )
    op.create_index(
        "ix_alumni_registrations_verification_token_hash",
        "alumni_registrations",
        ["verification_token_hash"],
    )

    op.create_table(
        "registration_audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("registration_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("performed_by", sa.String(length=255), nullable=False),
        sa.Column("is_automated", sa.Boolean(), nullable=False),
        sa.Column("previous_status", registration_status, nullable=True),
        sa.Column("new_status", registration_status, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["registration_id"], ["alumni_registrations.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index(
        "ix_registration_audit_log_registration_id",
        "registration_audit_log",
        ["registration_id", "created_at"],
    )

    op.create_table(
        "email_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("registration_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("notification_type", notification_type, nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("status", email_status, nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(length=100), nullable=True),
        *_created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["registration_id"], ["alumni_registrations.id"], ondelete="RESTRICT"
        ),
    )
    op.create_index("ix_email_logs_registration_id", "email_logs", ["registration_id"])


def downgrade() -> None:
    """Drop all registration tables and enum types."""
    op.drop_index("ix_email_logs_registration_id", table_name="email_logs")
    op.drop_table("email_logs")
    op.drop_index("ix_registration_audit_log_registration_id", table_name="registration_audit_log")
    op.drop_table("registration_audit_log")
    op.drop_index("ix_alumni_registrations_verification_token_hash", table_name="alumni_registrations")
    op.drop_index("ix_alumni_registrations_due", table_name="alumni_registrations")
    op.drop_index("ix_alumni_registrations_status", table_name="alumni_registrations")
    op.drop_table("alumni_registrations")

    bind = op.get_bind()
    for enum in (email_status, notification_type, audit_action, registration_status):
        enum.drop(bind, checkfirst=True)
