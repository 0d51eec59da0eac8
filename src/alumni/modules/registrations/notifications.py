"""
Notification Dispatcher

Sends the confirmation, approval and rejection emails of a registration at
most once each. Every delivery attempt is written to the email log with its
outcome and duration. The per-type `sent` flag is set only after the mail
provider accepted the message, and is never cleared.

Delivery failures are returned, not raised, so a failed send never aborts the
operation that triggered it.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from alumni.core import email
from alumni.core.config import settings
from alumni.modules.registrations import repository
from alumni.modules.registrations.models import EmailStatus, NotificationType, Registration

logger = logging.getLogger(__name__)


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    SKIPPED = "skipped"  # Already sent earlier
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationResult:
    status: NotificationStatus
    error: str | None = None
    duration_ms: int | None = None

    @property
    def sent(self) -> bool:
        return self.status == NotificationStatus.SENT


def _deliver(
    registration: Registration,
    notification_type: NotificationType,
    token: str | None,
):
    """Coroutine that delivers one message type to the applicant."""
    if notification_type == NotificationType.CONFIRMATION:
        return email.send_registration_confirmation(registration.email, registration.full_name)
    if notification_type == NotificationType.APPROVAL:
        if not token:
            raise ValueError("approval email requires the plain verification token")
        return email.send_registration_approved(
            registration.email,
            registration.full_name,
            token=token,
            expiry_days=settings.verification_token_days,
        )
    return email.send_registration_rejected(
        registration.email,
        registration.full_name,
        reason=registration.rejection_reason,
    )


async def send_notification(
    db: AsyncSession,
    registration: Registration,
    notification_type: NotificationType,
    token: str | None = None,
) -> NotificationResult:
    """
    Send one notification type for a registration unless it was already sent.

    The sent flag and the email log row are written in separate savepoints and
    then committed, so a failed log insert neither clears the flag of a message
    the provider accepted nor expires the other objects of the session.

    Args:
        db: Database session the registration is attached to
        registration: The recipient registration
        notification_type: Which email to send
        token: Plain verification token, required for approval emails

    Returns:
        SKIPPED if the sent flag is already set, otherwise SENT or FAILED
    """
    registration_id = registration.id
    recipient = registration.email

    if registration.is_notification_sent(notification_type):
        logger.debug(
            f"{notification_type.value} email already sent for registration {registration_id}"
        )
        return NotificationResult(NotificationStatus.SKIPPED)

    error: str | None = None
    message_id: str | None = None
    started = time.perf_counter()

    try:
        message_id = await asyncio.wait_for(
            _deliver(registration, notification_type, token),
            timeout=settings.email_timeout_seconds,
        )
    except TimeoutError:
        error = f"timed out after {settings.email_timeout_seconds}s"
    except Exception as e:
        error = str(e) or e.__class__.__name__

    duration_ms = int((time.perf_counter() - started) * 1000)

    if error:
        logger.error(
            f"Failed to send {notification_type.value} email for registration "
            f"{registration_id} ({duration_ms}ms): {error}"
        )
    else:
        logger.info(
            f"Sent {notification_type.value} email for registration {registration_id} "
            f"({duration_ms}ms)"
        )

    record_errors: list[str] = []

    if not error:
        try:
            async with db.begin_nested():
                registration.mark_notification_sent(notification_type, datetime.now(UTC))
        except SQLAlchemyError as e:
            logger.error(
                f"Could not set {notification_type.value} sent flag for registration "
                f"{registration_id}: {e}"
            )
            record_errors.append(f"sent flag not recorded: {e}")

    try:
        async with db.begin_nested():
            await repository.add_email_log(
                db,
                registration_id=registration_id,
                notification_type=notification_type,
                recipient=recipient,
                status=EmailStatus.FAILED if error else EmailStatus.SENT,
                duration_ms=duration_ms,
                error_message=error,
                provider_message_id=message_id,
            )
    except SQLAlchemyError as e:
        logger.error(
            f"Could not record {notification_type.value} email outcome for registration "
            f"{registration_id}: {e}"
        )
        record_errors.append(f"outcome not recorded: {e}")

    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"Could not commit {notification_type.value} email outcome for registration "
            f"{registration_id}: {e}"
        )
        record_errors.append(f"outcome not recorded: {e}")

    if error:
        return NotificationResult(NotificationStatus.FAILED, error=error, duration_ms=duration_ms)
    return NotificationResult(
        NotificationStatus.SENT,
        error="; ".join(record_errors) or None,
        duration_ms=duration_ms,
    )
