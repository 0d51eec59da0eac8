"""
Tests for the notification dispatcher.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from alumni.core.config import settings
from alumni.core.email import EmailDeliveryError
from alumni.modules.registrations.models import EmailStatus, NotificationType
from alumni.modules.registrations.notifications import NotificationStatus, send_notification

EMAIL = "alumni.modules.registrations.notifications.email"


@pytest.fixture
def mock_email_log():
    with patch(
        "alumni.modules.registrations.repository.add_email_log", AsyncMock()
    ) as mock_log:
        yield mock_log


class TestSendNotification:
    @pytest.mark.asyncio
    async def test_sends_and_sets_flag(self, mock_db, sample_registration, mock_email_log):
        with patch(
            f"{EMAIL}.send_registration_confirmation", AsyncMock(return_value="msg_1")
        ) as mock_send:
            result = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert result.status == NotificationStatus.SENT
        assert result.sent is True
        assert sample_registration.confirmation_email_sent is True
        assert sample_registration.confirmation_email_sent_at is not None
        mock_send.assert_awaited_once_with("john.doe@example.com", "John Doe")

        log_kwargs = mock_email_log.await_args.kwargs
        assert log_kwargs["status"] == EmailStatus.SENT
        assert log_kwargs["provider_message_id"] == "msg_1"
        assert log_kwargs["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_second_send_is_skipped(self, mock_db, sample_registration, mock_email_log):
        with patch(
            f"{EMAIL}.send_registration_confirmation", AsyncMock(return_value="msg_1")
        ) as mock_send:
            await send_notification(mock_db, sample_registration, NotificationType.CONFIRMATION)
            second = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert second.status == NotificationStatus.SKIPPED
        mock_send.assert_awaited_once()
        mock_email_log.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_leaves_flag_unset(self, mock_db, sample_registration, mock_email_log):
        with patch(
            f"{EMAIL}.send_registration_rejected",
            AsyncMock(side_effect=EmailDeliveryError("provider down")),
        ):
            result = await send_notification(
                mock_db, sample_registration, NotificationType.REJECTION
            )

        assert result.status == NotificationStatus.FAILED
        assert result.error == "provider down"
        assert sample_registration.rejection_email_sent is False

        log_kwargs = mock_email_log.await_args.kwargs
        assert log_kwargs["status"] == EmailStatus.FAILED
        assert log_kwargs["error_message"] == "provider down"

    @pytest.mark.asyncio
    async def test_failed_send_can_be_retried(self, mock_db, sample_registration, mock_email_log):
        with patch(
            f"{EMAIL}.send_registration_confirmation",
            AsyncMock(side_effect=[EmailDeliveryError("provider down"), "msg_2"]),
        ) as mock_send:
            first = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )
            second = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert first.status == NotificationStatus.FAILED
        assert second.status == NotificationStatus.SENT
        assert mock_send.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, mock_db, sample_registration, mock_email_log):
        async def slow(*args, **kwargs):
            await asyncio.sleep(5)

        with (
            patch.object(settings, "email_timeout_seconds", 0.01),
            patch(f"{EMAIL}.send_registration_confirmation", side_effect=slow),
        ):
            result = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert result.status == NotificationStatus.FAILED
        assert "timed out" in result.error
        assert sample_registration.confirmation_email_sent is False

    @pytest.mark.asyncio
    async def test_approval_requires_token(self, mock_db, sample_registration, mock_email_log):
        with patch(f"{EMAIL}.send_registration_approved", AsyncMock()) as mock_send:
            result = await send_notification(
                mock_db, sample_registration, NotificationType.APPROVAL
            )

        assert result.status == NotificationStatus.FAILED
        mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_approval_carries_token(self, mock_db, sample_registration, mock_email_log):
        with patch(
            f"{EMAIL}.send_registration_approved", AsyncMock(return_value="msg_3")
        ) as mock_send:
            result = await send_notification(
                mock_db, sample_registration, NotificationType.APPROVAL, token="tok"
            )

        assert result.sent is True
        assert mock_send.await_args.kwargs["token"] == "tok"
        assert mock_send.await_args.kwargs["expiry_days"] == 30

    @pytest.mark.asyncio
    async def test_log_write_failure_keeps_sent_flag(self, mock_db, sample_registration):
        with (
            patch(f"{EMAIL}.send_registration_confirmation", AsyncMock(return_value="msg_4")),
            patch(
                "alumni.modules.registrations.repository.add_email_log",
                AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db gone"))),
            ),
        ):
            result = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert result.status == NotificationStatus.SENT
        assert "outcome not recorded" in result.error
        assert sample_registration.confirmation_email_sent is True
        assert mock_db.begin_nested.call_count == 2
        mock_db.commit.assert_awaited_once()
        mock_db.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_failure_is_returned(
        self, mock_db, sample_registration, mock_email_log
    ):
        mock_db.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("db gone")))

        with patch(f"{EMAIL}.send_registration_confirmation", AsyncMock(return_value="msg_5")):
            result = await send_notification(
                mock_db, sample_registration, NotificationType.CONFIRMATION
            )

        assert result.status == NotificationStatus.SENT
        assert "outcome not recorded" in result.error
        mock_db.rollback.assert_awaited_once()
