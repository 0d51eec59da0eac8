"""
Alumni Registrations Repository

Database operations for registrations, audit entries and email logs.
Only data access lives here; decisions are made in the service, verification
and jobs modules.

Design Principles:
- All queries are parameterized
- Uniqueness of the dedup-sensitive fields is enforced by the database; a
  losing concurrent insert surfaces as DuplicateFieldError
- Status changes go through `apply_status_transition`, which enforces the
  state machine table
- Timezone-aware datetime handling (UTC)
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    UNIQUE_CONSTRAINT_FIELDS,
    AuditAction,
    AuditLogEntry,
    EmailLog,
    EmailStatus,
    NotificationType,
    Registration,
    RegistrationStatus,
)


class DuplicateFieldError(Exception):
    """The database rejected an insert on one of the dedup unique constraints."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Duplicate value for {field}")


def _field_from_integrity_error(error: IntegrityError) -> str | None:
    """Map a unique-constraint violation back to the dedup field it guards."""
    constraint = getattr(getattr(error.orig, "__cause__", None), "constraint_name", None)
    if constraint is None:
        constraint = getattr(error.orig, "constraint_name", None)
    if constraint in UNIQUE_CONSTRAINT_FIELDS:
        return UNIQUE_CONSTRAINT_FIELDS[constraint]

    # Fall back to the constraint name appearing in the driver message
    message = str(error.orig)
    for name, field in UNIQUE_CONSTRAINT_FIELDS.items():
        if name in message:
            return field
    return None


async def create(db: AsyncSession, values: dict[str, Any]) -> Registration:
    """
    Insert a new Pending registration and commit.

    Args:
        db: Database session
        values: Column values, dedup-sensitive fields already normalized

    Raises:
        DuplicateFieldError: If a unique constraint rejected the row
    """
    registration = Registration(
        id=uuid4(),
        **values,
        status=RegistrationStatus.PENDING,
        requires_manual_review=False,
        manually_reviewed=False,
        verification_attempts=0,
        confirmation_email_sent=False,
        approval_email_sent=False,
        rejection_email_sent=False,
        email_verified=False,
    )
    db.add(registration)

    try:
        await db.flush()
        add_audit_entry(
            db,
            registration,
            AuditAction.CREATED,
            performed_by="registrant",
            is_automated=False,
            previous_status=None,
        )
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        field = _field_from_integrity_error(e)
        if field is None:
            raise
        raise DuplicateFieldError(field) from e

    await db.refresh(registration)
    return registration


async def get_by_id(db: AsyncSession, id: UUID) -> Registration | None:
    """Get registration by ID."""
    return await db.get(Registration, id)


async def get_many_by_ids(db: AsyncSession, ids: Sequence[UUID]) -> list[Registration]:
    """Load several registrations in a single query."""
    if not ids:
        return []
    result = await db.execute(select(Registration).where(Registration.id.in_(list(ids))))
    return list(result.scalars().all())


async def get_by_email(db: AsyncSession, email: str) -> Registration | None:
    """Get registration by its normalized email address."""
    result = await db.execute(select(Registration).where(Registration.email == email))
    return result.scalars().first()


async def list_registrations(
    db: AsyncSession,
    status: RegistrationStatus | None = None,
    requires_manual_review: bool | None = None,
    email_verified: bool | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Registration], int]:
    """
    List registrations with optional filters, newest first.

    `search` matches full name, email, staff number or ID/passport
    case-insensitively.

    Returns:
        Tuple of (registrations, total_count)
    """
    conditions = []
    if status is not None:
        conditions.append(Registration.status == status)
    if requires_manual_review is not None:
        conditions.append(Registration.requires_manual_review == requires_manual_review)
    if email_verified is not None:
        conditions.append(Registration.email_verified == email_verified)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(
                Registration.full_name.ilike(pattern),
                Registration.email.ilike(pattern),
                Registration.staff_number.ilike(pattern),
                Registration.id_or_passport.ilike(pattern),
            )
        )

    count_result = await db.execute(select(func.count()).select_from(Registration).where(*conditions))
    total = count_result.scalar_one()

    result = await db.execute(
        select(Registration)
        .where(*conditions)
        .order_by(Registration.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def get_by_token_hash(db: AsyncSession, token_hash: str) -> Registration | None:
    """Get the registration holding a verification token hash."""
    result = await db.execute(
        select(Registration).where(Registration.verification_token_hash == token_hash)
    )
    return result.scalars().first()


async def exists_by_field(db: AsyncSession, field: str, value: Any) -> bool:
    """
    Check whether any stored registration holds `value` for a dedup field.

    `value` must already be normalized. For "mobile" it is a
    (country_code, number) tuple.
    """
    if field == "mobile":
        country_code, number = value
        condition = and_(
            Registration.mobile_country_code == country_code,
            Registration.mobile_number == number,
        )
    else:
        condition = getattr(Registration, field) == value

    result = await db.execute(select(Registration.id).where(condition).limit(1))
    return result.scalar_one_or_none() is not None


async def get_due_pending_ids(
    db: AsyncSession,
    now: datetime,
    max_attempts: int,
    limit: int,
) -> list[UUID]:
    """
    IDs of Pending registrations the scheduler should verify now.

    Excludes registrations flagged for manual review, those that exhausted the
    retry budget, and those whose backoff has not elapsed. Oldest first.
    """
    result = await db.execute(
        select(Registration.id)
        .where(
            Registration.status == RegistrationStatus.PENDING,
            Registration.requires_manual_review == False,  # noqa: E712
            Registration.verification_attempts < max_attempts,
            or_(
                Registration.next_verification_at.is_(None),
                Registration.next_verification_at <= now,
            ),
        )
        .order_by(Registration.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_manual_review(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Registration], int]:
    """Pending registrations awaiting a human decision, oldest first."""
    conditions = (
        Registration.status == RegistrationStatus.PENDING,
        Registration.requires_manual_review == True,  # noqa: E712
    )

    count_result = await db.execute(select(func.count()).select_from(Registration).where(*conditions))
    total = count_result.scalar_one()

    result = await db.execute(
        select(Registration)
        .where(*conditions)
        .order_by(Registration.created_at)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


# Valid status transitions. Nothing ever returns to PENDING.
VALID_STATUS_TRANSITIONS: dict[RegistrationStatus, set[RegistrationStatus]] = {
    RegistrationStatus.PENDING: {
        RegistrationStatus.APPROVED,
        RegistrationStatus.REJECTED,
    },
    RegistrationStatus.APPROVED: {
        RegistrationStatus.ACTIVE,  # Email verified via token
    },
    # Terminal states
    RegistrationStatus.REJECTED: set(),
    RegistrationStatus.ACTIVE: set(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an invalid status transition is attempted."""

    def __init__(
        self,
        current_status: RegistrationStatus,
        new_status: RegistrationStatus,
    ):
        self.current_status = current_status
        self.new_status = new_status
        valid_transitions = VALID_STATUS_TRANSITIONS.get(current_status, set())
        super().__init__(
            f"Invalid status transition: {current_status.value} -> {new_status.value}. "
            f"Valid transitions: {[s.value for s in valid_transitions]}"
        )


def add_audit_entry(
    db: AsyncSession,
    registration: Registration,
    action: AuditAction,
    performed_by: str,
    is_automated: bool,
    previous_status: RegistrationStatus | None,
    notes: str | None = None,
) -> AuditLogEntry:
    """Stage an audit entry in the current unit of work."""
    entry = AuditLogEntry(
        registration_id=registration.id,
        action=action,
        performed_by=performed_by,
        is_automated=is_automated,
        previous_status=previous_status,
        new_status=registration.status,
        notes=notes,
    )
    db.add(entry)
    return entry


def apply_status_transition(
    db: AsyncSession,
    registration: Registration,
    new_status: RegistrationStatus,
    action: AuditAction,
    performed_by: str,
    is_automated: bool,
    notes: str | None = None,
    **fields: Any,
) -> Registration:
    """
    Move a loaded registration to a new status and stage its audit entry.

    Nothing is flushed; the caller commits. A concurrent writer that changed
    the row since it was loaded makes that commit fail with StaleDataError.

    Raises:
        InvalidStatusTransitionError: If the state machine forbids the change
    """
    previous_status = registration.status
    if new_status not in VALID_STATUS_TRANSITIONS.get(previous_status, set()):
        raise InvalidStatusTransitionError(previous_status, new_status)

    registration.status = new_status
    for key, value in fields.items():
        setattr(registration, key, value)

    add_audit_entry(
        db,
        registration,
        action,
        performed_by=performed_by,
        is_automated=is_automated,
        previous_status=previous_status,
        notes=notes,
    )
    return registration


async def list_audit_entries(db: AsyncSession, registration_id: UUID) -> list[AuditLogEntry]:
    """Audit entries for one registration in the order they were written."""
    result = await db.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.registration_id == registration_id)
        .order_by(AuditLogEntry.created_at, AuditLogEntry.id)
    )
    return list(result.scalars().all())


async def add_email_log(
    db: AsyncSession,
    registration_id: UUID,
    notification_type: NotificationType,
    recipient: str,
    status: EmailStatus,
    duration_ms: int,
    error_message: str | None = None,
    provider_message_id: str | None = None,
) -> EmailLog:
    """Stage one delivery attempt and flush it. The caller commits."""
    log = EmailLog(
        registration_id=registration_id,
        notification_type=notification_type,
        recipient=recipient,
        status=status,
        duration_ms=duration_ms,
        error_message=error_message,
        provider_message_id=provider_message_id,
    )
    db.add(log)
    await db.flush()
    return log
