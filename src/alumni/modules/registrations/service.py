"""
Alumni Registrations Service Layer

Business logic for the registration workflow. Orchestrates the repository,
duplicate detection, verification tokens and notifications.

This module implements:
1. Registration Intake:
   - Advisory duplicate check over the five dedup-sensitive fields
   - Insert guarded by the database unique constraints
   - Confirmation email (failures are logged, never surfaced)

2. Email Verification:
   - Token validation and the Approved -> Active transition

3. Admin Decisions:
   - Approve / reject a single Pending registration
   - Bulk approve / reject: one read, one write, then isolated notifications

4. Queries:
   - Registrant status by email or registration ID
   - Admin listing with filters, detail and audit trail

Concurrency:
- Registrations carry a version counter; a transition that lost a race with
  another writer fails with ConcurrentModificationError instead of
  overwriting the other change
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from alumni.modules.registrations import duplicates, repository
from alumni.modules.registrations.duplicates import IdentityFields
from alumni.modules.registrations.models import (
    AuditAction,
    NotificationType,
    Registration,
    RegistrationStatus,
)
from alumni.modules.registrations.notifications import (
    NotificationResult,
    NotificationStatus,
    send_notification,
)
from alumni.modules.registrations.schemas import (
    BulkItemResult,
    DuplicateCheckRequest,
    RegistrationCreate,
)
from alumni.modules.registrations.tokens import (
    TokenStatus,
    TokenValidationResult,
    issue_token,
    validate_token,
)

logger = logging.getLogger(__name__)


class RegistrationServiceError(Exception):
    """Base exception for registration service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class DuplicateIdentityError(RegistrationServiceError):
    """Raised when a dedup-sensitive field is already registered."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(
            message=duplicates.duplicate_message(field),
            error_code="DUPLICATE_IDENTITY",
            status_code=409,
        )


class RegistrationNotFoundError(RegistrationServiceError):
    def __init__(self, registration_id: UUID | None = None):
        message = (
            f"Registration {registration_id} not found"
            if registration_id
            else "Registration not found"
        )
        super().__init__(
            message=message,
            error_code="REGISTRATION_NOT_FOUND",
            status_code=404,
        )


class AlreadyDecidedError(RegistrationServiceError):
    """Raised when an admin asks for the outcome the registration already has."""

    def __init__(self, registration_id: UUID, outcome: str):
        super().__init__(
            message=f"Registration {registration_id} is already {outcome}",
            error_code=f"ALREADY_{outcome.upper()}",
            status_code=409,
        )


class CannotDecideRegistrationError(RegistrationServiceError):
    """Raised when a registration is not in a status that allows the decision."""

    def __init__(self, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} registration in '{current_status}' status. "
            "Only pending registrations can be decided.",
            error_code="INVALID_STATUS_FOR_DECISION",
            status_code=409,
        )


class ConcurrentModificationError(RegistrationServiceError):
    """Raised when another writer changed the registration first."""

    def __init__(self, registration_id: UUID | None = None):
        target = f"Registration {registration_id}" if registration_id else "A registration"
        super().__init__(
            message=f"{target} was modified concurrently. Reload and try again.",
            error_code="CONCURRENT_MODIFICATION",
            status_code=409,
        )


@dataclass
class DecisionOutcome:
    """A decided registration and what happened to its notification."""

    registration: Registration
    notification: NotificationResult


# ============================================
# Registration Intake
# ============================================


def _identity_fields(data: RegistrationCreate | DuplicateCheckRequest) -> IdentityFields:
    return IdentityFields.normalize(
        id_or_passport=data.id_or_passport,
        staff_number=data.staff_number,
        email=data.email,
        mobile_country_code=data.mobile_country_code,
        mobile_number=data.mobile_number,
        professional_network_handle=data.professional_network_handle,
    )


async def check_duplicates(db: AsyncSession, data: DuplicateCheckRequest) -> str | None:
    """Advisory check: the first dedup field already registered, or None."""
    return await duplicates.find_conflict(db, _identity_fields(data))


async def submit_registration(db: AsyncSession, data: RegistrationCreate) -> Registration:
    """
    Create a Pending registration and send the confirmation email.

    Raises:
        DuplicateIdentityError: If any dedup-sensitive field is already
            registered, whether caught by the advisory check or by the
            database constraint during a concurrent submission
    """
    fields = _identity_fields(data)

    conflict = await duplicates.find_conflict(db, fields)
    if conflict:
        raise DuplicateIdentityError(conflict)

    now = datetime.now(UTC)
    values = {
        **fields.as_columns(),
        "full_name": " ".join(data.full_name.split()),
        "current_country_code": data.current_country_code.upper()
        if data.current_country_code
        else None,
        "current_city": data.current_city,
        "current_employer": data.current_employer,
        "current_job_title": data.current_job_title,
        "industry": data.industry,
        "qualifications_attained": list(data.qualifications_attained),
        "engagement_preferences": list(data.engagement_preferences),
        "consent_given": data.consent_given,
        "consent_given_at": now,
    }

    try:
        registration = await repository.create(db, values)
    except repository.DuplicateFieldError as e:
        logger.warning(f"Concurrent duplicate registration rejected by database on {e.field}")
        raise DuplicateIdentityError(e.field) from e

    logger.info(f"Registration {registration.id} created (pending verification)")

    # Confirmation email is best effort
    try:
        result = await send_notification(db, registration, NotificationType.CONFIRMATION)
        if not result.sent:
            logger.warning(
                f"Confirmation email not sent for registration {registration.id}: {result.error}"
            )
    except Exception as e:
        logger.error(
            f"Confirmation email failed for registration {registration.id}: {e}", exc_info=True
        )

    return registration


# ============================================
# Email Verification
# ============================================


async def verify_email(db: AsyncSession, token: str) -> TokenValidationResult:
    """
    Validate a verification token and activate its registration.

    A second click on an already-used link reports ALREADY_VERIFIED.
    If two clicks race, the loser re-validates and sees ALREADY_VERIFIED.
    """
    result = await validate_token(db, token)
    if result.status != TokenStatus.VALID:
        return result

    registration = result.registration
    now = datetime.now(UTC)

    repository.apply_status_transition(
        db,
        registration,
        RegistrationStatus.ACTIVE,
        AuditAction.EMAIL_VERIFIED,
        performed_by=registration.email,
        is_automated=False,
        email_verified=True,
        email_verified_at=now,
    )

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.info(f"Registration {registration.id} activated concurrently, re-validating")
        db.expunge_all()
        return await validate_token(db, token)

    logger.info(f"Registration {registration.id} email verified, now active")
    return TokenValidationResult(TokenStatus.VALID, registration)


# ============================================
# Admin Decisions
# ============================================


async def _get_or_404(db: AsyncSession, registration_id: UUID) -> Registration:
    registration = await repository.get_by_id(db, registration_id)
    if not registration:
        logger.warning(f"Registration not found: {registration_id}")
        raise RegistrationNotFoundError(registration_id)
    return registration


def _stage_approval(
    db: AsyncSession,
    registration: Registration,
    actor: str,
    notes: str | None,
    now: datetime,
) -> str:
    """Stage a manual approval. Returns the plain verification token."""
    if registration.status in (RegistrationStatus.APPROVED, RegistrationStatus.ACTIVE):
        raise AlreadyDecidedError(registration.id, "approved")
    if registration.status != RegistrationStatus.PENDING:
        raise CannotDecideRegistrationError(registration.status.value, "approve")

    token = issue_token(registration, issued_at=now)
    repository.apply_status_transition(
        db,
        registration,
        RegistrationStatus.APPROVED,
        AuditAction.MANUALLY_APPROVED,
        performed_by=actor,
        is_automated=False,
        notes=notes,
        manually_reviewed=True,
        reviewed_by=actor,
        reviewed_at=now,
        review_notes=notes,
        approved_at=now,
    )
    return token


def _stage_rejection(
    db: AsyncSession,
    registration: Registration,
    actor: str,
    reason: str,
    notes: str | None,
    now: datetime,
) -> None:
    if registration.status == RegistrationStatus.REJECTED:
        raise AlreadyDecidedError(registration.id, "rejected")
    if registration.status != RegistrationStatus.PENDING:
        raise CannotDecideRegistrationError(registration.status.value, "reject")

    repository.apply_status_transition(
        db,
        registration,
        RegistrationStatus.REJECTED,
        AuditAction.MANUALLY_REJECTED,
        performed_by=actor,
        is_automated=False,
        notes=notes or reason,
        manually_reviewed=True,
        reviewed_by=actor,
        reviewed_at=now,
        review_notes=notes,
        rejection_reason=reason,
        rejected_at=now,
    )


async def _commit_decision(db: AsyncSession, registration_id: UUID | None = None) -> None:
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        logger.warning(f"Concurrent modification while deciding {registration_id or 'batch'}")
        raise ConcurrentModificationError(registration_id) from e


async def admin_approve_registration(
    db: AsyncSession,
    registration_id: UUID,
    actor: str,
    notes: str | None = None,
) -> DecisionOutcome:
    """
    Approve a Pending registration on behalf of an administrator.

    Issues a verification token and sends the approval email. A failed email
    does not undo the approval.

    Raises:
        RegistrationNotFoundError: If the registration doesn't exist
        AlreadyDecidedError: If it is already approved (or active)
        CannotDecideRegistrationError: If it is not Pending
        ConcurrentModificationError: If another writer changed it first
    """
    logger.info(f"Admin {actor} approving registration {registration_id}")

    registration = await _get_or_404(db, registration_id)
    token = _stage_approval(db, registration, actor, notes, datetime.now(UTC))
    await _commit_decision(db, registration_id)

    logger.info(f"Registration {registration_id} approved by {actor}")

    notification = await send_notification(
        db, registration, NotificationType.APPROVAL, token=token
    )
    return DecisionOutcome(registration=registration, notification=notification)


async def admin_reject_registration(
    db: AsyncSession,
    registration_id: UUID,
    actor: str,
    reason: str,
    notes: str | None = None,
) -> DecisionOutcome:
    """
    Reject a Pending registration on behalf of an administrator.

    Raises:
        RegistrationNotFoundError: If the registration doesn't exist
        AlreadyDecidedError: If it is already rejected
        CannotDecideRegistrationError: If it is not Pending
        ConcurrentModificationError: If another writer changed it first
    """
    logger.info(f"Admin {actor} rejecting registration {registration_id}")

    registration = await _get_or_404(db, registration_id)
    _stage_rejection(db, registration, actor, reason, notes, datetime.now(UTC))
    await _commit_decision(db, registration_id)

    logger.info(f"Registration {registration_id} rejected by {actor}")

    notification = await send_notification(db, registration, NotificationType.REJECTION)
    return DecisionOutcome(registration=registration, notification=notification)


async def _notify_each(
    db: AsyncSession,
    decided: list[tuple[UUID, Registration, str | None]],
    notification_type: NotificationType,
    results: dict[UUID, BulkItemResult],
) -> None:
    """Send one notification per decided registration; failures stay per item."""
    for registration_id, registration, token in decided:
        item = results[registration_id]
        try:
            outcome = await send_notification(db, registration, notification_type, token=token)
        except Exception as e:
            logger.error(
                f"Notification for registration {registration_id} failed: {e}", exc_info=True
            )
            item.notification_error = str(e)
            continue

        item.notification_sent = outcome.status == NotificationStatus.SENT
        item.notification_error = outcome.error


async def _bulk_decide(
    db: AsyncSession,
    registration_ids: list[UUID],
    stage,
    notification_type: NotificationType,
) -> list[BulkItemResult]:
    ids = list(dict.fromkeys(registration_ids))
    registrations = {r.id: r for r in await repository.get_many_by_ids(db, ids)}
    now = datetime.now(UTC)

    results: dict[UUID, BulkItemResult] = {}
    decided: list[tuple[UUID, Registration, str | None]] = []

    for registration_id in ids:
        registration = registrations.get(registration_id)
        if registration is None:
            results[registration_id] = BulkItemResult(
                registration_id=registration_id, success=False, error="Registration not found"
            )
            continue
        try:
            token = stage(registration, now)
        except RegistrationServiceError as e:
            results[registration_id] = BulkItemResult(
                registration_id=registration_id, success=False, error=e.message
            )
            continue
        results[registration_id] = BulkItemResult(registration_id=registration_id, success=True)
        decided.append((registration_id, registration, token))

    if decided:
        await _commit_decision(db)

    await _notify_each(db, decided, notification_type, results)
    return [results[registration_id] for registration_id in ids]


async def bulk_approve(
    db: AsyncSession,
    registration_ids: list[UUID],
    actor: str,
    notes: str | None = None,
) -> list[BulkItemResult]:
    """
    Approve many registrations at once.

    All targets are loaded in one query and all state changes are written in
    one commit. Approval emails are sent afterwards, one by one; a failed email
    leaves that item approved with its sent flag unset.

    Raises:
        ConcurrentModificationError: If any target changed since it was loaded;
            nothing is written in that case
    """
    logger.info(f"Admin {actor} bulk approving {len(registration_ids)} registrations")
    results = await _bulk_decide(
        db,
        registration_ids,
        lambda registration, now: _stage_approval(db, registration, actor, notes, now),
        NotificationType.APPROVAL,
    )
    succeeded = sum(1 for r in results if r.success)
    logger.info(f"Bulk approve by {actor}: {succeeded}/{len(results)} approved")
    return results


async def bulk_reject(
    db: AsyncSession,
    registration_ids: list[UUID],
    actor: str,
    reason: str,
    notes: str | None = None,
) -> list[BulkItemResult]:
    """Reject many registrations at once. Same write and notification rules as bulk_approve."""
    logger.info(f"Admin {actor} bulk rejecting {len(registration_ids)} registrations")
    results = await _bulk_decide(
        db,
        registration_ids,
        lambda registration, now: _stage_rejection(db, registration, actor, reason, notes, now),
        NotificationType.REJECTION,
    )
    succeeded = sum(1 for r in results if r.success)
    logger.info(f"Bulk reject by {actor}: {succeeded}/{len(results)} rejected")
    return results


# ============================================
# Admin Queries
# ============================================


async def list_manual_review(
    db: AsyncSession, page: int = 1, page_size: int = 20
) -> tuple[list[Registration], int]:
    return await repository.list_manual_review(db, page=page, page_size=page_size)


async def get_audit_log(db: AsyncSession, registration_id: UUID):
    """Audit entries of one registration, oldest first."""
    await _get_or_404(db, registration_id)
    return await repository.list_audit_entries(db, registration_id)


async def list_registrations(
    db: AsyncSession,
    status: RegistrationStatus | None = None,
    requires_manual_review: bool | None = None,
    email_verified: bool | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[Registration], int]:
    return await repository.list_registrations(
        db,
        status=status,
        requires_manual_review=requires_manual_review,
        email_verified=email_verified,
        search=search,
        page=page,
        page_size=page_size,
    )


async def get_registration(db: AsyncSession, registration_id: UUID) -> Registration:
    """
    Raises:
        RegistrationNotFoundError: If the registration doesn't exist
    """
    return await _get_or_404(db, registration_id)


# ============================================
# Registrant Status
# ============================================

STATUS_MESSAGES = {
    RegistrationStatus.PENDING: (
        "Your registration is being reviewed. Check your email for updates."
    ),
    RegistrationStatus.APPROVED: (
        "Registration approved. Check your email for the verification link."
    ),
    RegistrationStatus.ACTIVE: "Email verified. Your registration is complete.",
    RegistrationStatus.REJECTED: (
        "Your registration was not approved. Please contact the alumni office."
    ),
}


def status_message(registration: Registration) -> str:
    return STATUS_MESSAGES[registration.status]


async def get_registration_by_email(db: AsyncSession, email: str) -> Registration:
    """
    Look a registration up by the email it was submitted with.

    Raises:
        RegistrationNotFoundError: If no registration uses that address
    """
    normalized = duplicates.normalize_email(email)
    registration = await repository.get_by_email(db, normalized) if normalized else None
    if not registration:
        raise RegistrationNotFoundError()
    return registration
