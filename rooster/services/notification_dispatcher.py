from typing import Optional

import redis
from sqlalchemy.orm import Session

from rooster.config.settings import settings
from rooster.db.models import EventLogStatus
from rooster.services.event_log_service import EventLogService
from rooster.services.events.registry import EventTriggerRegistry
from rooster.services.notifications.notification_service import NotificationService
from rooster.services.retry_policy import DispatchOutcome, DispatchResult
from rooster.utils.errors import EventTriggerNotFoundError
from rooster.utils.redis_lock import RedisLock, notification_lock_key
from rooster.utils.logging import get_logger

logger = get_logger()


class NotificationDispatcher:
    """Delivers one event log under a per-entry advisory lock."""

    def __init__(
        self,
        db_session: Session,
        notification_service: NotificationService,
        registry: EventTriggerRegistry,
        redis_client: redis.Redis,
        lock_ttl_ms: Optional[int] = None,
        channel_type: Optional[str] = None,
    ):
        self.db = db_session
        self.event_logs = EventLogService(db_session)
        self.notification_service = notification_service
        self.registry = registry
        self.redis = redis_client
        self.lock_ttl_ms = lock_ttl_ms or settings.NOTIFICATION_LOCK_TTL_MS
        self.channel_type = channel_type

    async def dispatch(
        self, event_log_id: str, allow_failed: bool = False
    ) -> DispatchResult:
        """
        Deliver the notification for an event log.

        Args:
            event_log_id: Event log to deliver
            allow_failed: Also deliver entries in FAILED status. Set for the
                re-attempts of a job's own retry burst.
        """
        lock = RedisLock(
            self.redis, notification_lock_key(event_log_id), ttl_ms=self.lock_ttl_ms
        )

        try:
            acquired = lock.acquire()
        except redis.RedisError as e:
            logger.error(f"Could not acquire lock for event {event_log_id}: {str(e)}")
            return DispatchResult(
                DispatchOutcome.FAILED, event_log_id, f"Lock unavailable: {str(e)}"
            )

        if not acquired:
            logger.warning(
                f"Notification job already processing for event: {event_log_id}"
            )
            return DispatchResult(DispatchOutcome.LOCKED, event_log_id)

        try:
            return await self._dispatch_locked(event_log_id, allow_failed)
        finally:
            lock.release()

    async def _dispatch_locked(
        self, event_log_id: str, allow_failed: bool
    ) -> DispatchResult:
        event_log = self.event_logs.get_by_id(event_log_id)
        if event_log is None:
            logger.error(f"Event log not found, dropping job: {event_log_id}")
            return DispatchResult(
                DispatchOutcome.DROPPED, event_log_id, "Event log not found"
            )

        deliverable = {EventLogStatus.PENDING, EventLogStatus.RETRY}
        if allow_failed:
            deliverable.add(EventLogStatus.FAILED)

        if event_log.status not in deliverable:
            logger.info(
                f"Event {event_log_id} is not deliverable in status: {event_log.status.value}"
            )
            return DispatchResult(DispatchOutcome.SKIPPED, event_log_id)

        try:
            message = self.event_logs.get_message_for_event(event_log, self.registry)
        except EventTriggerNotFoundError as e:
            logger.error(f"Cannot build message for event {event_log_id}: {e.message}")
            self.event_logs.update_status(
                event_log_id, EventLogStatus.FAILED, e.message
            )
            return DispatchResult(DispatchOutcome.DROPPED, event_log_id, e.message)

        try:
            result = await self.notification_service.send_event_notification(
                event_log, message, self.channel_type
            )

            if result.success:
                self.event_logs.update_status(event_log_id, EventLogStatus.SENT)
                logger.info(f"Successfully sent notification for event: {event_log_id}")
                return DispatchResult(DispatchOutcome.SENT, event_log_id)

            reason = result.reason or f"Failed to send notification via {result.channel}"
            self.event_logs.update_status(event_log_id, EventLogStatus.FAILED, reason)
            logger.error(f"Failed to send notification for event {event_log_id}: {reason}")
            return DispatchResult(DispatchOutcome.FAILED, event_log_id, reason)

        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Error processing notification for event {event_log_id}: {str(e)}"
            )
            try:
                self.event_logs.update_status(
                    event_log_id, EventLogStatus.FAILED, str(e)
                )
            except Exception as update_error:
                self.db.rollback()
                logger.error(
                    f"Could not record failure for event {event_log_id}: {str(update_error)}"
                )
            return DispatchResult(DispatchOutcome.FAILED, event_log_id, str(e))
