"""
Alumni Registrations Background Jobs

The approval pass: select Pending registrations that are due for identity
verification, verify them with a bounded number of concurrent workers, and
apply each decision.

Design Principles:
- Passes are idempotent (safe to run multiple times)
- Every registration is read, decided and written back in its own session;
  no registration state is cached between passes
- A registration is processed at most once per pass
- Registrations flagged for manual review are never touched
- One registration's failure never stops the pass

Schedule (timezone from settings):
- Business hours, Mon-Fri 08:00-17:59: every 2 minutes
- Off hours, Mon-Fri: every 15 minutes
- Weekends: every 30 minutes
With smart scheduling disabled a single interval job is used instead.
"""

import asyncio
import logging
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from alumni.core.config import settings
from alumni.core.database import async_session_maker
from alumni.core.scheduler import register_job
from alumni.modules.registrations import repository
from alumni.modules.registrations.identity import get_identity_lookup
from alumni.modules.registrations.models import (
    AuditAction,
    NotificationType,
    Registration,
    RegistrationStatus,
)
from alumni.modules.registrations.notifications import send_notification
from alumni.modules.registrations.tokens import issue_token
from alumni.modules.registrations.verification import (
    REASON_SERVICE_UNAVAILABLE,
    Decision,
    VerificationDecision,
    VerificationEngine,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

# Job IDs for registration and manual triggering
JOB_ID_BUSINESS_HOURS = "registrations_verify_business_hours"
JOB_ID_OFF_HOURS = "registrations_verify_off_hours"
JOB_ID_WEEKENDS = "registrations_verify_weekends"
JOB_ID_INTERVAL = "registrations_verify_pending"

# Passes started by adjacent cron windows never overlap
_pass_lock = asyncio.Lock()


def calculate_next_attempt(attempts: int, attempted_at: datetime, base_minutes: int) -> datetime:
    """Exponential backoff: base, 2x base, 4x base, ... after each failed attempt."""
    return attempted_at + timedelta(minutes=base_minutes * 2 ** max(attempts - 1, 0))


def is_due(registration: Registration, now: datetime, max_attempts: int) -> bool:
    """Whether the scheduler may verify this registration now."""
    return (
        registration.status == RegistrationStatus.PENDING
        and not registration.requires_manual_review
        and registration.verification_attempts < max_attempts
        and (
            registration.next_verification_at is None
            or registration.next_verification_at <= now
        )
    )


def _record_identity(registration: Registration, result: VerificationDecision) -> None:
    registration.name_similarity_score = result.score
    if result.record is not None:
        registration.identity_staff_name = result.record.full_name
        registration.identity_department = result.record.department
        registration.identity_exit_date = result.record.exit_date


def _flag_for_manual_review(
    db: AsyncSession, registration: Registration, reason: str, now: datetime
) -> None:
    registration.requires_manual_review = True
    registration.manual_review_reason = reason
    registration.next_verification_at = None
    repository.add_audit_entry(
        db,
        registration,
        AuditAction.MANUAL_REVIEW_REQUIRED,
        performed_by=SYSTEM_ACTOR,
        is_automated=True,
        previous_status=registration.status,
        notes=reason,
    )


def apply_decision(
    db: AsyncSession,
    registration: Registration,
    result: VerificationDecision,
    now: datetime,
    max_attempts: int,
    retry_delay_minutes: int,
) -> tuple[NotificationType | None, str | None]:
    """
    Stage the state change for one verification decision.

    Returns:
        (notification to send after commit, plain verification token)
    """
    registration.last_verification_attempt_at = now

    if result.decision == Decision.APPROVE:
        _record_identity(registration, result)
        token = issue_token(registration, issued_at=now)
        repository.apply_status_transition(
            db,
            registration,
            RegistrationStatus.APPROVED,
            AuditAction.AUTO_APPROVED,
            performed_by=SYSTEM_ACTOR,
            is_automated=True,
            notes=f"Name similarity {result.score}%" + (" (mock identity)" if result.is_mock else ""),
            approved_at=now,
            next_verification_at=None,
        )
        return NotificationType.APPROVAL, token

    if result.decision == Decision.REJECT:
        _record_identity(registration, result)
        repository.apply_status_transition(
            db,
            registration,
            RegistrationStatus.REJECTED,
            AuditAction.AUTO_REJECTED,
            performed_by=SYSTEM_ACTOR,
            is_automated=True,
            notes=f"{result.reason} (similarity {result.score}%)",
            rejection_reason=result.reason,
            rejected_at=now,
            next_verification_at=None,
        )
        return NotificationType.REJECTION, None

    if result.decision == Decision.REQUIRE_MANUAL_REVIEW:
        _flag_for_manual_review(db, registration, result.reason, now)
        return None, None

    # Lookup unavailable: retry later, or hand over once the budget is spent
    registration.verification_attempts += 1
    if registration.verification_attempts >= max_attempts:
        logger.warning(
            f"Registration {registration.id} exhausted {max_attempts} verification attempts"
        )
        _flag_for_manual_review(db, registration, REASON_SERVICE_UNAVAILABLE, now)
    else:
        registration.next_verification_at = calculate_next_attempt(
            registration.verification_attempts, now, retry_delay_minutes
        )
    return None, None


async def process_registration(
    registration_id: UUID,
    engine: VerificationEngine,
    now: datetime,
) -> dict[str, Any]:
    """
    Verify one registration in its own session and apply the decision.

    The registration is re-read and re-checked first; anything that stopped
    being due since selection is skipped. A concurrent writer makes the commit
    fail and the registration is left for the next pass.
    """
    async with async_session_maker() as db:
        registration = await repository.get_by_id(db, registration_id)
        if registration is None or not is_due(registration, now, settings.max_verification_attempts):
            return {"registration_id": str(registration_id), "outcome": "skipped"}

        try:
            result = await engine.verify(registration)
        except Exception as e:
            logger.error(
                f"Verification of registration {registration_id} failed: {e}", exc_info=True
            )
            result = VerificationDecision(
                decision=Decision.LOOKUP_UNAVAILABLE, reason=str(e) or e.__class__.__name__
            )

        notification_type, token = apply_decision(
            db,
            registration,
            result,
            now,
            max_attempts=settings.max_verification_attempts,
            retry_delay_minutes=settings.retry_delay_minutes,
        )

        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            logger.info(f"Registration {registration_id} changed during verification, skipping")
            return {"registration_id": str(registration_id), "outcome": "conflict"}

        outcome = (
            "manual_review" if registration.requires_manual_review else result.decision.value
        )
        logger.info(
            f"Registration {registration_id}: {outcome} "
            f"(attempt {registration.verification_attempts})"
        )

        item: dict[str, Any] = {"registration_id": str(registration_id), "outcome": outcome}
        if notification_type is not None:
            notification = await send_notification(db, registration, notification_type, token=token)
            item["notification"] = notification.status.value
        return item


async def process_pending_registrations(engine: VerificationEngine | None = None) -> dict[str, Any]:
    """
    Run one approval pass over all due Pending registrations.

    Returns:
        Summary with the number selected, per-outcome counts and per-item results
    """
    if _pass_lock.locked():
        logger.info("Approval pass already running, skipping")
        return {"selected": 0, "outcomes": {}, "items": [], "skipped": True}

    async with _pass_lock:
        engine = engine or VerificationEngine(
            get_identity_lookup(), threshold=settings.name_match_threshold
        )
        now = datetime.now(UTC)

        async with async_session_maker() as db:
            due_ids = await repository.get_due_pending_ids(
                db,
                now=now,
                max_attempts=settings.max_verification_attempts,
                limit=settings.approval_batch_size,
            )

        ids = list(dict.fromkeys(due_ids))
        logger.info(f"Approval pass: {len(ids)} registrations due for verification")

        semaphore = asyncio.Semaphore(max(settings.approval_concurrency, 1))

        async def run(registration_id: UUID) -> dict[str, Any]:
            async with semaphore:
                try:
                    return await process_registration(registration_id, engine, now)
                except Exception as e:
                    logger.error(
                        f"Error verifying registration {registration_id}: {e}", exc_info=True
                    )
                    return {
                        "registration_id": str(registration_id),
                        "outcome": "error",
                        "error": str(e),
                    }

        items = await asyncio.gather(*(run(registration_id) for registration_id in ids))
        outcomes = Counter(item["outcome"] for item in items)

        logger.info(f"Approval pass completed: {dict(outcomes)}")
        return {"selected": len(ids), "outcomes": dict(outcomes), "items": list(items)}


def build_triggers() -> dict[str, Any]:
    """Job ID -> trigger for the approval pass, per the scheduling settings."""
    tz = settings.scheduler_timezone

    if not settings.enable_smart_scheduling:
        return {
            JOB_ID_INTERVAL: IntervalTrigger(
                minutes=settings.business_hours_interval_minutes, timezone=tz
            )
        }

    return {
        JOB_ID_BUSINESS_HOURS: CronTrigger(
            day_of_week="mon-fri",
            hour="8-17",
            minute=f"*/{settings.business_hours_interval_minutes}",
            timezone=tz,
        ),
        JOB_ID_OFF_HOURS: CronTrigger(
            day_of_week="mon-fri",
            hour="0-7,18-23",
            minute=f"*/{settings.off_hours_interval_minutes}",
            timezone=tz,
        ),
        JOB_ID_WEEKENDS: CronTrigger(
            day_of_week="sat,sun",
            minute=f"*/{settings.weekend_interval_minutes}",
            timezone=tz,
        ),
    }


def register_registration_jobs() -> None:
    """
    Register the approval pass with the scheduler.

    Called during application startup.
    """
    logger.info("Registering registration background jobs...")

    for job_id, trigger in build_triggers().items():
        register_job(job_id=job_id, func=process_pending_registrations, trigger=trigger)
        logger.info(f"Registered job: {job_id} ({trigger})")
