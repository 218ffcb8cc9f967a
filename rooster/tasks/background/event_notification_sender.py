import asyncio
from typing import Optional

from rooster.celery import celery
from rooster.config.settings import settings
from rooster.db.session import get_sync_session
from rooster.db.models import EventLogStatus
from rooster.services.event_log_service import EventLogService
from rooster.services.events.registry import get_event_trigger_registry
from rooster.services.notification_dispatcher import NotificationDispatcher
from rooster.services.notifications.notification_service import (
    create_notification_service,
)
from rooster.services.retry_policy import DispatchOutcome, decide_retry
from rooster.utils.redis_lock import get_redis_client
from rooster.utils.context import set_request_id
from rooster.utils.logging import get_logger


@celery.task(bind=True, max_retries=None)
def send_event_notification_task(
    self, request_id: str, event_log_id: str, max_attempts: Optional[int] = None
):
    """
    Celery task to deliver the notification for a single event log.

    The job carries only the event log id; the dispatcher re-reads the entry
    under a per-entry lock. Failed deliveries are requeued with exponential
    backoff until `max_attempts` attempts have been made.

    Args:
        request_id: The request ID of the scan or sweep that queued this job
        event_log_id: UUID of the event log (as string)
        max_attempts: Attempt ceiling for this job (default: RETRY_ATTEMPTS).
            Jobs submitted by the recovery sweep use 1.
    """
    max_attempts = max_attempts or settings.RETRY_ATTEMPTS
    attempt = self.request.retries or 0

    result = asyncio.run(
        _async_send_event_notification(
            request_id, event_log_id, allow_failed=attempt > 0
        )
    )

    decision = decide_retry(
        DispatchOutcome(result["outcome"]),
        attempt=attempt,
        max_attempts=max_attempts,
        base_delay_ms=settings.DISPATCH_BACKOFF_BASE_MS,
    )
    if decision.requeue:
        raise self.retry(
            countdown=decision.countdown_seconds, max_retries=max_attempts - 1
        )

    return result


async def _async_send_event_notification(
    request_id: str, event_log_id: str, allow_failed: bool = False
):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            dispatcher = NotificationDispatcher(
                db_session=db_session,
                notification_service=create_notification_service(),
                registry=get_event_trigger_registry(),
                redis_client=get_redis_client(),
            )
            dispatch_result = await dispatcher.dispatch(
                event_log_id, allow_failed=allow_failed
            )

            return {
                "success": dispatch_result.outcome == DispatchOutcome.SENT,
                "outcome": dispatch_result.outcome.value,
                "reason": dispatch_result.reason,
                "event_log_id": event_log_id,
                "request_id": request_id,
            }

        except Exception as e:
            logger.error(
                f"Critical error in event notification task for {event_log_id}: {str(e)}"
            )

            return {
                "success": False,
                "outcome": DispatchOutcome.FAILED.value,
                "error": str(e),
                "event_log_id": event_log_id,
                "request_id": request_id,
            }


@celery.task(bind=True, max_retries=0)
def retry_event_notification_task(self, request_id: str, event_log_id: str):
    """
    Celery task queued by the recovery sweep for a FAILED event log.

    Marks the entry RETRY (incrementing retry_count) and submits a fresh
    single-attempt delivery job, so backoff does not compound across sweeps.

    Args:
        request_id: The request ID of the recovery sweep
        event_log_id: UUID of the event log (as string)
    """
    return asyncio.run(_async_retry_event_notification(request_id, event_log_id))


async def _async_retry_event_notification(request_id: str, event_log_id: str):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            logger.info(f"Retrying notification for event: {event_log_id}")

            event_logs = EventLogService(db_session)
            event_log = event_logs.get_by_id(event_log_id)

            if event_log is None:
                logger.error(f"Event log not found, dropping retry: {event_log_id}")
                return {
                    "success": False,
                    "error": "Event log not found",
                    "event_log_id": event_log_id,
                    "request_id": request_id,
                }

            if event_log.status != EventLogStatus.FAILED:
                logger.info(
                    f"Event {event_log_id} is no longer failed ({event_log.status.value}), skipping retry"
                )
                return {
                    "success": True,
                    "skipped": True,
                    "status": event_log.status.value,
                    "event_log_id": event_log_id,
                    "request_id": request_id,
                }

            event_logs.update_status(event_log_id, EventLogStatus.RETRY)

            try:
                send_event_notification_task.apply_async(
                    kwargs={
                        "request_id": request_id,
                        "event_log_id": event_log_id,
                        "max_attempts": 1,
                    }
                )
            except Exception as e:
                # Back to FAILED so the next sweep can pick it up again
                reason = f"Could not queue retry: {str(e)}"
                logger.error(f"{reason} (event {event_log_id})")
                event_logs.update_status(event_log_id, EventLogStatus.FAILED, reason)
                return {
                    "success": False,
                    "error": reason,
                    "event_log_id": event_log_id,
                    "request_id": request_id,
                }

            return {
                "success": True,
                "event_log_id": event_log_id,
                "retry_count": event_log.retry_count + 1,
                "request_id": request_id,
            }

        except Exception as e:
            logger.error(
                f"Retry notification task exception for {event_log_id}: {str(e)}"
            )
            return {
                "success": False,
                "error": str(e),
                "event_log_id": event_log_id,
                "request_id": request_id,
            }
