import asyncio
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock, patch

import pytest
import redis
from sqlalchemy import select

from rooster.config.settings import settings
from rooster.db.custom_types import new_uuid
from rooster.db.models import EventLog, EventLogStatus
from rooster.services.event_log_service import EventLogService
from rooster.services.notification_dispatcher import NotificationDispatcher
from rooster.services.notifications import (
    BaseNotificationChannel,
    NotificationService,
)
from rooster.services.events.birthday_trigger import BirthdayTrigger
from rooster.services.retry_policy import DispatchOutcome
from rooster.tasks.cron.hourly_event_scanner import _async_hourly_event_scan
from rooster.utils.redis_lock import RedisLock, notification_lock_key


class RecordingChannel(BaseNotificationChannel):
    """Channel that records every message and answers with a fixed result."""

    channel_type = "recording"

    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.sent: List[Dict[str, Any]] = []

    async def deliver(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> bool:
        if self.error:
            raise self.error
        self.sent.append({"message": message, "recipient": recipient})
        return self.result


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def dispatcher(db_session, channel, registry, fake_redis):
    return NotificationDispatcher(
        db_session=db_session,
        notification_service=NotificationService([channel], default_channel="recording"),
        registry=registry,
        redis_client=fake_redis,
        lock_ttl_ms=30000,
    )


def _status(db_session, event_log_id):
    return EventLogService(db_session).get_by_id(event_log_id)


class TestDispatch:
    """Test delivering a single event log."""

    @pytest.mark.asyncio
    async def test_pending_entry_is_sent(
        self, dispatcher, channel, db_session, birthday_user, make_event_log, fake_redis
    ):
        event_log = make_event_log(birthday_user)

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.SENT
        refreshed = _status(db_session, event_log.id)
        assert refreshed.status == EventLogStatus.SENT
        assert refreshed.sent_at is not None
        assert channel.sent[0]["message"] == "Hey, Ada Lovelace it's your birthday"
        assert channel.sent[0]["recipient"]["eventKind"] == "birthday"
        # Lock released after delivery
        assert fake_redis.get(notification_lock_key(event_log.id)) is None

    @pytest.mark.asyncio
    async def test_cached_message_is_delivered(
        self, dispatcher, channel, birthday_user, make_event_log
    ):
        event_log = make_event_log(
            birthday_user, metadata={"timezone": "America/New_York", "message": "Cached!"}
        )

        await dispatcher.dispatch(event_log.id)

        assert channel.sent[0]["message"] == "Cached!"

    @pytest.mark.asyncio
    async def test_entry_in_retry_status_is_delivered(
        self, dispatcher, db_session, birthday_user, make_event_log
    ):
        event_log = make_event_log(
            birthday_user, status=EventLogStatus.RETRY, retry_count=1
        )

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.SENT
        assert _status(db_session, event_log.id).retry_count == 1

    @pytest.mark.asyncio
    async def test_failed_delivery_marks_entry_failed(
        self, db_session, registry, fake_redis, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)
        dispatcher = NotificationDispatcher(
            db_session=db_session,
            notification_service=NotificationService(
                [RecordingChannel(result=False)], default_channel="recording"
            ),
            registry=registry,
            redis_client=fake_redis,
        )

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.FAILED
        refreshed = _status(db_session, event_log.id)
        assert refreshed.status == EventLogStatus.FAILED
        assert refreshed.error_message == "Failed to send notification via recording"
        assert refreshed.retry_count == 0

    @pytest.mark.asyncio
    async def test_channel_exception_marks_entry_failed_and_releases_lock(
        self, db_session, registry, fake_redis, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)
        dispatcher = NotificationDispatcher(
            db_session=db_session,
            notification_service=NotificationService(
                [RecordingChannel(error=RuntimeError("connection reset"))],
                default_channel="recording",
            ),
            registry=registry,
            redis_client=fake_redis,
        )

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.FAILED
        assert _status(db_session, event_log.id).error_message == "connection reset"
        assert fake_redis.get(notification_lock_key(event_log.id)) is None

    @pytest.mark.asyncio
    async def test_lock_released_when_store_raises(
        self, dispatcher, fake_redis, birthday_user, make_event_log, monkeypatch
    ):
        event_log = make_event_log(birthday_user)

        def broken_get_by_id(event_log_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(dispatcher.event_logs, "get_by_id", broken_get_by_id)

        with pytest.raises(RuntimeError):
            await dispatcher.dispatch(event_log.id)

        assert fake_redis.get(notification_lock_key(event_log.id)) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [EventLogStatus.SENT, EventLogStatus.FAILED])
    async def test_non_deliverable_entry_is_skipped(
        self, status, dispatcher, channel, db_session, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user, status=status)

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.SKIPPED
        assert channel.sent == []
        assert _status(db_session, event_log.id).status == status

    @pytest.mark.asyncio
    async def test_failed_entry_delivered_when_allowed(
        self, dispatcher, db_session, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user, status=EventLogStatus.FAILED)

        result = await dispatcher.dispatch(event_log.id, allow_failed=True)

        assert result.outcome == DispatchOutcome.SENT
        assert _status(db_session, event_log.id).status == EventLogStatus.SENT

    @pytest.mark.asyncio
    async def test_missing_entry_is_dropped(self, dispatcher, channel):
        result = await dispatcher.dispatch(new_uuid())

        assert result.outcome == DispatchOutcome.DROPPED
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_dropped_and_marked_failed(
        self, dispatcher, channel, db_session, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user, event_type="graduation")

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.DROPPED
        assert channel.sent == []
        assert _status(db_session, event_log.id).status == EventLogStatus.FAILED


class TestLocking:
    """Test the per-entry advisory lock."""

    @pytest.mark.asyncio
    async def test_held_lock_means_no_delivery(
        self, dispatcher, channel, db_session, fake_redis, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)
        other_worker = RedisLock(fake_redis, notification_lock_key(event_log.id))
        assert other_worker.acquire()

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.LOCKED
        assert channel.sent == []
        assert _status(db_session, event_log.id).status == EventLogStatus.PENDING
        # The other worker's lock is untouched
        assert fake_redis.get(notification_lock_key(event_log.id)) == other_worker.token

    @pytest.mark.asyncio
    async def test_second_dispatch_after_success_sends_nothing(
        self, dispatcher, channel, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)

        first = await dispatcher.dispatch(event_log.id)
        second = await dispatcher.dispatch(event_log.id)

        assert first.outcome == DispatchOutcome.SENT
        assert second.outcome == DispatchOutcome.SKIPPED
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_unreachable_redis_fails_without_touching_the_entry(
        self, db_session, channel, registry, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)
        broken_redis = MagicMock()
        broken_redis.set.side_effect = redis.ConnectionError("redis down")
        dispatcher = NotificationDispatcher(
            db_session=db_session,
            notification_service=NotificationService([channel], default_channel="recording"),
            registry=registry,
            redis_client=broken_redis,
        )

        result = await dispatcher.dispatch(event_log.id)

        assert result.outcome == DispatchOutcome.FAILED
        assert channel.sent == []
        assert _status(db_session, event_log.id).status == EventLogStatus.PENDING

    def test_release_keeps_a_lock_taken_over_after_expiry(self, fake_redis):
        key = notification_lock_key("abc")
        first = RedisLock(fake_redis, key, ttl_ms=30000)
        assert first.acquire()

        # Simulate expiry and takeover by another worker
        fake_redis.delete(key)
        second = RedisLock(fake_redis, key, ttl_ms=30000)
        assert second.acquire()

        first.release()

        assert fake_redis.get(key) == second.token

    def test_lock_as_context_manager(self, fake_redis):
        key = notification_lock_key("ctx")

        with RedisLock(fake_redis, key) as lock:
            assert lock.acquired
            assert fake_redis.get(key) == lock.token

        assert fake_redis.get(key) is None
        assert not lock.acquired


class SlowRecordingChannel(RecordingChannel):
    """Recording channel that holds the delivery open for a moment."""

    async def deliver(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> bool:
        await asyncio.sleep(0.05)
        return await super().deliver(message, recipient)


class TestConcurrentDispatch:
    @pytest.mark.asyncio
    async def test_concurrent_dispatches_deliver_once(
        self, session_factory, db_session, registry, fake_redis, birthday_user, make_event_log
    ):
        event_log = make_event_log(birthday_user)
        channel = SlowRecordingChannel()
        other_session = session_factory()

        def _dispatcher(session):
            return NotificationDispatcher(
                db_session=session,
                notification_service=NotificationService(
                    [channel], default_channel="recording"
                ),
                registry=registry,
                redis_client=fake_redis,
            )

        try:
            results = await asyncio.gather(
                _dispatcher(db_session).dispatch(event_log.id),
                _dispatcher(other_session).dispatch(event_log.id),
            )
        finally:
            other_session.close()

        assert sorted(r.outcome.value for r in results) == ["locked", "sent"]
        assert len(channel.sent) == 1
        assert _status(db_session, event_log.id).status == EventLogStatus.SENT


class TestMessageCaching:
    """The message recorded at scan time is the one delivered."""

    @pytest.mark.asyncio
    @pytest.mark.integration
    async def test_scan_time_message_survives_trigger_change(
        self,
        dispatcher,
        channel,
        db_session,
        registry,
        birthday_user,
        fixed_now,
        patch_sync_session,
        monkeypatch,
    ):
        monkeypatch.setattr(settings, "SUPPORTED_TIMEZONES", [])
        monkeypatch.setattr(settings, "EVENT_CHECK_HOUR", 9)
        patch_sync_session("rooster.tasks.cron.hourly_event_scanner")

        with patch(
            "rooster.tasks.background.event_notification_sender."
            "send_event_notification_task.apply_async"
        ):
            scan = await _async_hourly_event_scan("test-scan", now=fixed_now)
        assert scan["events_recorded"] == 1

        monkeypatch.setattr(
            BirthdayTrigger, "build_message", lambda self, user: "Reworded greeting"
        )
        assert registry.get_trigger("birthday").build_message(birthday_user) == (
            "Reworded greeting"
        )

        event_log_id = db_session.execute(select(EventLog.id)).scalar_one()
        result = await dispatcher.dispatch(event_log_id)

        assert result.outcome == DispatchOutcome.SENT
        assert channel.sent[0]["message"] == "Hey, Ada Lovelace it's your birthday"
