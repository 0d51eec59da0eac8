"""
Tests for the approval pass background job.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import httpx
import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm.exc import StaleDataError

from alumni.core.config import settings
from alumni.modules.registrations import jobs
from alumni.modules.registrations.identity import HttpIdentityLookup, IdentityRecord
from alumni.modules.registrations.models import (
    AuditAction,
    AuditLogEntry,
    NotificationType,
    RegistrationStatus,
)
from alumni.modules.registrations.notifications import NotificationResult, NotificationStatus
from alumni.modules.registrations.verification import (
    REASON_IDENTITY_NOT_FOUND,
    REASON_NAME_MISMATCH,
    REASON_SERVICE_UNAVAILABLE,
    Decision,
    VerificationDecision,
    VerificationEngine,
)

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
RECORD = IdentityRecord(staff_number="0012345", full_name="John Doe", department="Finance")

APPROVE = VerificationDecision(Decision.APPROVE, score=92, record=RECORD)
REJECT = VerificationDecision(Decision.REJECT, reason=REASON_NAME_MISMATCH, score=40, record=RECORD)
NOT_FOUND = VerificationDecision(Decision.REQUIRE_MANUAL_REVIEW, reason=REASON_IDENTITY_NOT_FOUND)
UNAVAILABLE = VerificationDecision(Decision.LOOKUP_UNAVAILABLE, reason="timeout")


def _audit_actions(mock_db) -> list[AuditAction]:
    return [
        call.args[0].action
        for call in mock_db.add.call_args_list
        if isinstance(call.args[0], AuditLogEntry)
    ]


def _apply(mock_db, registration, result, now=NOW):
    return jobs.apply_decision(
        mock_db, registration, result, now, max_attempts=5, retry_delay_minutes=10
    )


class TestBackoff:
    def test_doubles_after_each_attempt(self):
        delays = [jobs.calculate_next_attempt(n, NOW, 10) - NOW for n in range(1, 5)]
        assert delays == [
            timedelta(minutes=10),
            timedelta(minutes=20),
            timedelta(minutes=40),
            timedelta(minutes=80),
        ]


class TestIsDue:
    def test_fresh_pending_is_due(self, sample_registration):
        assert jobs.is_due(sample_registration, NOW, 5) is True

    def test_waiting_for_backoff(self, make_registration):
        registration = make_registration(next_verification_at=NOW + timedelta(minutes=1))
        assert jobs.is_due(registration, NOW, 5) is False

    def test_backoff_elapsed(self, make_registration):
        registration = make_registration(next_verification_at=NOW)
        assert jobs.is_due(registration, NOW, 5) is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"requires_manual_review": True},
            {"verification_attempts": 5},
            {"status": RegistrationStatus.APPROVED},
        ],
    )
    def test_not_due(self, make_registration, overrides):
        assert jobs.is_due(make_registration(**overrides), NOW, 5) is False


class TestApplyDecision:
    def test_approve(self, mock_db, sample_registration):
        notification, token = _apply(mock_db, sample_registration, APPROVE)

        assert notification == NotificationType.APPROVAL
        assert token
        assert sample_registration.status == RegistrationStatus.APPROVED
        assert sample_registration.verification_attempts == 0
        assert sample_registration.last_verification_attempt_at == NOW
        assert sample_registration.name_similarity_score == 92
        assert sample_registration.identity_department == "Finance"
        assert sample_registration.token_expiry == NOW + timedelta(days=30)
        assert sample_registration.manually_reviewed is False
        assert _audit_actions(mock_db) == [AuditAction.AUTO_APPROVED]

        entry = mock_db.add.call_args.args[0]
        assert entry.performed_by == jobs.SYSTEM_ACTOR
        assert entry.is_automated is True

    def test_reject(self, mock_db, sample_registration):
        notification, token = _apply(mock_db, sample_registration, REJECT)

        assert notification == NotificationType.REJECTION
        assert token is None
        assert sample_registration.status == RegistrationStatus.REJECTED
        assert sample_registration.rejection_reason == REASON_NAME_MISMATCH
        assert sample_registration.name_similarity_score == 40
        assert _audit_actions(mock_db) == [AuditAction.AUTO_REJECTED]

    def test_not_found_flags_for_manual_review(self, mock_db, sample_registration):
        notification, token = _apply(mock_db, sample_registration, NOT_FOUND)

        assert notification is None
        assert sample_registration.status == RegistrationStatus.PENDING
        assert sample_registration.requires_manual_review is True
        assert sample_registration.manual_review_reason == REASON_IDENTITY_NOT_FOUND
        assert _audit_actions(mock_db) == [AuditAction.MANUAL_REVIEW_REQUIRED]

    def test_unavailable_schedules_retry(self, mock_db, sample_registration):
        notification, _ = _apply(mock_db, sample_registration, UNAVAILABLE)

        assert notification is None
        assert sample_registration.status == RegistrationStatus.PENDING
        assert sample_registration.verification_attempts == 1
        assert sample_registration.requires_manual_review is False
        assert sample_registration.next_verification_at == NOW + timedelta(minutes=10)
        assert _audit_actions(mock_db) == []

    def test_retry_budget_hands_over_to_manual_review(self, mock_db, sample_registration):
        now = NOW
        for _ in range(5):
            assert jobs.is_due(sample_registration, now, 5)
            _apply(mock_db, sample_registration, UNAVAILABLE, now=now)
            if sample_registration.next_verification_at is not None:
                now = sample_registration.next_verification_at

        assert sample_registration.verification_attempts == 5
        assert sample_registration.requires_manual_review is True
        assert sample_registration.manual_review_reason == REASON_SERVICE_UNAVAILABLE
        assert sample_registration.status == RegistrationStatus.PENDING
        assert _audit_actions(mock_db) == [AuditAction.MANUAL_REVIEW_REQUIRED]


@pytest.fixture
def session_maker(mock_db):
    maker = MagicMock()
    maker.return_value.__aenter__.return_value = mock_db
    maker.return_value.__aexit__.return_value = False
    with patch("alumni.modules.registrations.jobs.async_session_maker", maker):
        yield maker


def _engine(*results):
    engine = MagicMock()
    engine.verify = AsyncMock(side_effect=list(results))
    return engine


class TestProcessRegistration:
    @pytest.mark.asyncio
    async def test_approves_and_notifies(self, mock_db, session_maker, sample_registration):
        with (
            patch(
                "alumni.modules.registrations.repository.get_by_id",
                AsyncMock(return_value=sample_registration),
            ),
            patch(
                "alumni.modules.registrations.jobs.send_notification",
                AsyncMock(return_value=NotificationResult(NotificationStatus.SENT)),
            ) as mock_send,
        ):
            item = await jobs.process_registration(sample_registration.id, _engine(APPROVE), NOW)

        assert item["outcome"] == "approve"
        assert item["notification"] == "sent"
        assert mock_send.await_args.args[2] == NotificationType.APPROVAL
        assert mock_send.await_args.kwargs["token"]
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_found_is_untouched_by_later_passes(
        self, mock_db, session_maker, sample_registration
    ):
        engine = _engine(NOT_FOUND)

        with (
            patch(
                "alumni.modules.registrations.repository.get_by_id",
                AsyncMock(return_value=sample_registration),
            ),
            patch("alumni.modules.registrations.jobs.send_notification", AsyncMock()) as mock_send,
        ):
            outcomes = [
                (await jobs.process_registration(sample_registration.id, engine, NOW))["outcome"]
                for _ in range(5)
            ]

        assert outcomes == ["manual_review"] + ["skipped"] * 4
        assert sample_registration.verification_attempts == 0
        assert sample_registration.status == RegistrationStatus.PENDING
        assert engine.verify.await_count == 1
        assert _audit_actions(mock_db) == [AuditAction.MANUAL_REVIEW_REQUIRED]
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_registration_is_skipped(self, session_maker):
        engine = _engine()

        with patch(
            "alumni.modules.registrations.repository.get_by_id", AsyncMock(return_value=None)
        ):
            item = await jobs.process_registration(uuid4(), engine, NOW)

        assert item["outcome"] == "skipped"
        engine.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_change_is_left_for_next_pass(
        self, mock_db, session_maker, sample_registration
    ):
        mock_db.commit = AsyncMock(side_effect=StaleDataError("version mismatch"))

        with (
            patch(
                "alumni.modules.registrations.repository.get_by_id",
                AsyncMock(return_value=sample_registration),
            ),
            patch("alumni.modules.registrations.jobs.send_notification", AsyncMock()) as mock_send,
        ):
            item = await jobs.process_registration(sample_registration.id, _engine(APPROVE), NOW)

        assert item["outcome"] == "conflict"
        mock_db.rollback.assert_awaited_once()
        mock_send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_registry_response_spends_retry_budget(
        self, mock_db, session_maker, sample_registration
    ):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=["garbage"]))
        engine = VerificationEngine(
            HttpIdentityLookup("http://registry.test/lookup", transport=transport)
        )

        now = NOW
        outcomes = []
        with (
            patch(
                "alumni.modules.registrations.repository.get_by_id",
                AsyncMock(return_value=sample_registration),
            ),
            patch.object(settings, "max_verification_attempts", 5),
        ):
            for _ in range(7):
                item = await jobs.process_registration(sample_registration.id, engine, now)
                outcomes.append(item["outcome"])
                if sample_registration.next_verification_at is not None:
                    now = sample_registration.next_verification_at

        assert outcomes == ["lookup_unavailable"] * 4 + ["manual_review"] + ["skipped"] * 2
        assert sample_registration.verification_attempts == 5
        assert sample_registration.requires_manual_review is True
        assert sample_registration.manual_review_reason == REASON_SERVICE_UNAVAILABLE
        assert sample_registration.status == RegistrationStatus.PENDING

    @pytest.mark.asyncio
    async def test_engine_error_counts_as_unavailable(
        self, mock_db, session_maker, sample_registration
    ):
        engine = MagicMock()
        engine.verify = AsyncMock(side_effect=AttributeError("bad registry payload"))

        with patch(
            "alumni.modules.registrations.repository.get_by_id",
            AsyncMock(return_value=sample_registration),
        ):
            item = await jobs.process_registration(sample_registration.id, engine, NOW)

        assert item["outcome"] == "lookup_unavailable"
        assert sample_registration.verification_attempts == 1
        assert sample_registration.next_verification_at == NOW + timedelta(
            minutes=settings.retry_delay_minutes
        )
        mock_db.commit.assert_awaited_once()


class TestProcessPendingRegistrations:
    @pytest.mark.asyncio
    async def test_runs_each_due_registration_once(self, session_maker):
        first, second, third = uuid4(), uuid4(), uuid4()

        async def process(registration_id, engine, now):
            if registration_id == third:
                raise RuntimeError("unexpected")
            return {"registration_id": str(registration_id), "outcome": "approve"}

        with (
            patch(
                "alumni.modules.registrations.repository.get_due_pending_ids",
                AsyncMock(return_value=[first, second, first, third]),
            ) as mock_due,
            patch(
                "alumni.modules.registrations.jobs.process_registration", side_effect=process
            ) as mock_process,
        ):
            summary = await jobs.process_pending_registrations(engine=MagicMock())

        assert summary["selected"] == 3
        assert summary["outcomes"] == {"approve": 2, "error": 1}
        assert mock_process.await_count == 3
        assert mock_due.await_args.kwargs["max_attempts"] == settings.max_verification_attempts
        assert mock_due.await_args.kwargs["limit"] == settings.approval_batch_size

    @pytest.mark.asyncio
    async def test_overlapping_pass_is_skipped(self):
        async with jobs._pass_lock:
            summary = await jobs.process_pending_registrations(engine=MagicMock())

        assert summary["skipped"] is True
        assert summary["selected"] == 0


class TestBuildTriggers:
    def test_smart_schedule(self):
        with patch.object(settings, "enable_smart_scheduling", True):
            triggers = jobs.build_triggers()

        assert set(triggers) == {
            jobs.JOB_ID_BUSINESS_HOURS,
            jobs.JOB_ID_OFF_HOURS,
            jobs.JOB_ID_WEEKENDS,
        }
        assert all(isinstance(t, CronTrigger) for t in triggers.values())

    def test_business_hours_window(self):
        with patch.object(settings, "enable_smart_scheduling", True):
            trigger = jobs.build_triggers()[jobs.JOB_ID_BUSINESS_HOURS]

        fields = {f.name: str(f) for f in trigger.fields}
        assert fields["day_of_week"] == "mon-fri"
        assert fields["hour"] == "8-17"
        assert fields["minute"] == "*/2"

    def test_single_interval_when_smart_scheduling_disabled(self):
        with patch.object(settings, "enable_smart_scheduling", False):
            triggers = jobs.build_triggers()

        assert list(triggers) == [jobs.JOB_ID_INTERVAL]
        assert isinstance(triggers[jobs.JOB_ID_INTERVAL], IntervalTrigger)

    def test_register_jobs(self):
        with patch("alumni.modules.registrations.jobs.register_job") as mock_register:
            jobs.register_registration_jobs()

        registered = {call.kwargs["job_id"] for call in mock_register.call_args_list}
        assert registered == set(jobs.build_triggers())
        assert all(
            call.kwargs["func"] is jobs.process_pending_registrations
            for call in mock_register.call_args_list
        )
