"""
Alumni Registrations Models

Database models for alumni registrations, their append-only audit trail and
the email delivery log.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from alumni.core.database import Base


class RegistrationStatus(str, enum.Enum):
    """Lifecycle status of a registration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"


class NotificationType(str, enum.Enum):
    """Transactional emails sent to an applicant."""

    CONFIRMATION = "confirmation"
    APPROVAL = "approval"
    REJECTION = "rejection"


class EmailStatus(str, enum.Enum):
    """Outcome of a single delivery attempt."""

    SENT = "sent"
    FAILED = "failed"


class AuditAction(str, enum.Enum):
    """What happened to a registration."""

    CREATED = "created"
    AUTO_APPROVED = "auto_approved"
    AUTO_REJECTED = "auto_rejected"
    MANUAL_REVIEW_REQUIRED = "manual_review_required"
    MANUALLY_APPROVED = "manually_approved"
    MANUALLY_REJECTED = "manually_rejected"
    EMAIL_VERIFIED = "email_verified"


# Unique constraint name -> dedup-sensitive field, used to name the offending
# field when the database rejects a concurrent duplicate.
UNIQUE_CONSTRAINT_FIELDS: dict[str, str] = {
    "uq_alumni_registrations_id_or_passport": "id_or_passport",
    "uq_alumni_registrations_staff_number": "staff_number",
    "uq_alumni_registrations_email": "email",
    "uq_alumni_registrations_mobile": "mobile",
    "uq_alumni_registrations_professional_network_handle": "professional_network_handle",
}


class Registration(Base):
    """
    An alumni registration.

    Dedup-sensitive fields are stored normalized (see duplicates.py) so that
    the unique constraints compare normalized values. NULLs never collide.
    """

    __tablename__ = "alumni_registrations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Identity (dedup-sensitive)
    id_or_passport: Mapped[str] = mapped_column(String(50), nullable=False)
    staff_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile_country_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    professional_network_handle: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Profile
    current_country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    current_city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    current_employer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    current_job_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    industry: Mapped[str | None] = mapped_column(String(100), nullable=True)
    qualifications_attained: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    engagement_preferences: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    consent_given: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consent_given_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Workflow
    status: Mapped[RegistrationStatus] = mapped_column(
        Enum(RegistrationStatus, name="registration_status"),
        nullable=False,
        default=RegistrationStatus.PENDING,
    )
    requires_manual_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    manual_review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    manually_reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Identity verification
    verification_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_verification_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_verification_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    name_similarity_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    identity_staff_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    identity_department: Mapped[str | None] = mapped_column(String(200), nullable=True)
    identity_exit_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Notification idempotency guards
    confirmation_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmation_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approval_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approval_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_email_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Email verification (SHA-256 of the token, never the token itself)
    verification_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    token_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Decision
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("id_or_passport", name="uq_alumni_registrations_id_or_passport"),
        UniqueConstraint("staff_number", name="uq_alumni_registrations_staff_number"),
        UniqueConstraint("email", name="uq_alumni_registrations_email"),
        UniqueConstraint(
            "mobile_country_code", "mobile_number", name="uq_alumni_registrations_mobile"
        ),
        UniqueConstraint(
            "professional_network_handle",
            name="uq_alumni_registrations_professional_network_handle",
        ),
        Index("ix_alumni_registrations_status", "status"),
        Index(
            "ix_alumni_registrations_due",
            "status",
            "requires_manual_review",
            "next_verification_at",
        ),
        Index("ix_alumni_registrations_verification_token_hash", "verification_token_hash"),
    )

    def is_notification_sent(self, notification_type: NotificationType) -> bool:
        return bool(getattr(self, f"{notification_type.value}_email_sent"))

    def mark_notification_sent(self, notification_type: NotificationType, sent_at: datetime) -> None:
        """Set the sent guard for one notification type. Never cleared."""
        setattr(self, f"{notification_type.value}_email_sent", True)
        setattr(self, f"{notification_type.value}_email_sent_at", sent_at)

    def __repr__(self) -> str:
        return f"<Registration {self.id} status={self.status.value}>"


class AuditLogEntry(Base):
    """
    Append-only record of one registration state change.

    Rows are inserted once and never updated or deleted.
    """

    __tablename__ = "registration_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alumni_registrations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction, name="audit_action"), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False)
    previous_status: Mapped[RegistrationStatus | None] = mapped_column(
        Enum(RegistrationStatus, name="registration_status"), nullable=True
    )
    new_status: Mapped[RegistrationStatus] = mapped_column(
        Enum(RegistrationStatus, name="registration_status"), nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_registration_audit_log_registration_id", "registration_id", "created_at"),
    )


class EmailLog(Base):
    """One delivery attempt of a transactional email."""

    __tablename__ = "email_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    registration_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("alumni_registrations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="notification_type"), nullable=False
    )
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[EmailStatus] = mapped_column(Enum(EmailStatus, name="email_status"), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_email_logs_registration_id", "registration_id"),)
