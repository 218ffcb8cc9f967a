import pytest
from unittest.mock import AsyncMock, patch

from celery.exceptions import Retry

from rooster.config.settings import settings
from rooster.db.models import EventLogStatus
from rooster.services.event_log_service import EventLogService
from rooster.services.notifications import NotificationService, WebhookChannel
from rooster.tasks.background import event_notification_sender
from rooster.tasks.background.event_notification_sender import (
    _async_send_event_notification,
    send_event_notification_task,
)
from rooster.tasks.background.scheduler_stats import _async_scheduler_stats

SENDER_MODULE = "rooster.tasks.background.event_notification_sender"
EVENT_LOG_ID = "3f2b8c1e-6d4a-4b7e-9f0a-1c2d3e4f5a6b"


def _dispatch_result(outcome: str):
    return {
        "success": outcome == "sent",
        "outcome": outcome,
        "reason": None,
        "event_log_id": EVENT_LOG_ID,
        "request_id": "test-send",
    }


@pytest.fixture
def run_attempt():
    """Run the task body as Celery would on its Nth delivery attempt."""

    def _run(attempt: int, outcome: str, **task_kwargs):
        send_event_notification_task.push_request(retries=attempt)
        try:
            with patch(
                f"{SENDER_MODULE}._async_send_event_notification",
                new=AsyncMock(return_value=_dispatch_result(outcome)),
            ) as dispatch, patch.object(
                send_event_notification_task, "retry", side_effect=Retry()
            ) as retry:
                try:
                    result = send_event_notification_task.run(
                        "test-send", EVENT_LOG_ID, **task_kwargs
                    )
                except Retry:
                    result = None
            return result, dispatch, retry
        finally:
            send_event_notification_task.pop_request()

    return _run


class TestSendEventNotificationTask:
    """Test the requeue behaviour of the delivery task."""

    @pytest.fixture(autouse=True)
    def retry_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "RETRY_ATTEMPTS", 3)
        monkeypatch.setattr(settings, "DISPATCH_BACKOFF_BASE_MS", 2000)

    def test_failure_is_requeued_with_backoff(self, run_attempt):
        result, dispatch, retry = run_attempt(0, "failed")

        assert result is None
        retry.assert_called_once_with(countdown=2.0, max_retries=2)
        dispatch.assert_awaited_once_with(
            "test-send", EVENT_LOG_ID, allow_failed=False
        )

    def test_reattempts_may_deliver_failed_entries(self, run_attempt):
        _, dispatch, retry = run_attempt(1, "failed")

        dispatch.assert_awaited_once_with("test-send", EVENT_LOG_ID, allow_failed=True)
        retry.assert_called_once_with(countdown=4.0, max_retries=2)

    def test_final_attempt_is_not_requeued(self, run_attempt):
        result, _, retry = run_attempt(2, "failed")

        retry.assert_not_called()
        assert result["outcome"] == "failed"

    def test_single_attempt_job_is_not_requeued(self, run_attempt):
        result, _, retry = run_attempt(0, "failed", max_attempts=1)

        retry.assert_not_called()
        assert result["success"] is False

    @pytest.mark.parametrize("outcome", ["sent", "locked", "skipped", "dropped"])
    def test_non_failures_are_not_requeued(self, run_attempt, outcome):
        result, _, retry = run_attempt(0, outcome)

        retry.assert_not_called()
        assert result["outcome"] == outcome


class TestAsyncSendEventNotification:
    """Test the task body against the test database."""

    @pytest.mark.asyncio
    async def test_delivers_and_reports_outcome(
        self,
        db_session,
        birthday_user,
        make_event_log,
        fake_redis,
        patch_sync_session,
        monkeypatch,
    ):
        event_log = make_event_log(birthday_user)
        patch_sync_session(SENDER_MODULE)
        monkeypatch.setattr(event_notification_sender, "get_redis_client", lambda: fake_redis)
        monkeypatch.setattr(
            event_notification_sender,
            "create_notification_service",
            lambda: NotificationService(
                [WebhookChannel(webhook_url="")], default_channel="webhook"
            ),
        )

        result = await _async_send_event_notification("test-send", event_log.id)

        assert result["outcome"] == "failed"
        assert result["success"] is False
        refreshed = EventLogService(db_session).get_by_id(event_log.id)
        assert refreshed.status == EventLogStatus.FAILED
        assert refreshed.error_message == "Notification channel not configured: webhook"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported_as_failure(
        self, patch_sync_session, monkeypatch
    ):
        patch_sync_session(SENDER_MODULE)

        def unavailable():
            raise RuntimeError("redis not configured")

        monkeypatch.setattr(event_notification_sender, "get_redis_client", unavailable)

        result = await _async_send_event_notification("test-send", EVENT_LOG_ID)

        assert result["outcome"] == "failed"
        assert result["error"] == "redis not configured"


class TestSchedulerStats:
    @pytest.mark.asyncio
    async def test_collects_events_users_and_channels(
        self, make_user, make_event_log, patch_sync_session
    ):
        user = make_user()
        make_user(first_name="Kenji", timezone="Asia/Tokyo")
        make_event_log(user, status=EventLogStatus.SENT)
        patch_sync_session("rooster.tasks.background.scheduler_stats")

        result = await _async_scheduler_stats("test-stats")

        assert result["success"] is True
        stats = result["stats"]
        assert stats["events"]["total"] == 1
        assert stats["users"]["total"] == 2
        assert stats["event_types"] == ["birthday", "anniversary"]
        assert stats["channels"] == ["webhook", "email"]
