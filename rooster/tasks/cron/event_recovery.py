import asyncio
from datetime import datetime, timedelta
from typing import Optional

from rooster.celery import celery
from rooster.config.settings import settings
from rooster.db.session import get_sync_session
from rooster.services.event_log_service import EventLogService
from rooster.services.retry_policy import backoff_delay_ms
from rooster.utils.context import set_request_id
from rooster.utils.datetime_utils import naive_utc_now, to_naive_utc
from rooster.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def event_recovery_task(self, request_id: str):
    """
    Periodic task that re-queues FAILED event logs still eligible for retry.

    An event log is eligible when its retry_count is below RETRY_ATTEMPTS and it
    has not been touched for RECOVERY_COOLDOWN_MINUTES. Each one is queued as a
    single retry job delayed by RETRY_DELAY_BASE_MS * 2^retry_count.

    PENDING and RETRY entries untouched for the same cool-down lost their
    delivery job (worker crash, redelivery while locked) and are queued again
    as single-attempt deliveries.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_event_recovery(request_id))


async def _async_event_recovery(request_id: str, now: Optional[datetime] = None):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            event_logs = EventLogService(db_session)
            cool_down = timedelta(minutes=settings.RECOVERY_COOLDOWN_MINUTES)

            failed_events = event_logs.failed_eligible_for_retry(
                max_retries=settings.RETRY_ATTEMPTS,
                cool_down=cool_down,
                limit=settings.RECOVERY_BATCH_SIZE,
                now=now,
            )
            stalled_events = event_logs.pending_entries(
                limit=settings.RECOVERY_BATCH_SIZE,
                updated_before=(to_naive_utc(now) if now else naive_utc_now())
                - cool_down,
                include_retry=True,
            )

            if not failed_events and not stalled_events:
                return {
                    "success": True,
                    "queued_count": 0,
                    "total_found": 0,
                    "stalled_requeued": 0,
                    "stalled_found": 0,
                    "request_id": request_id,
                }

            # Import here to avoid circular imports
            from rooster.tasks.background.event_notification_sender import (
                retry_event_notification_task,
                send_event_notification_task,
            )

            queued_count = 0
            for event_log in failed_events:
                try:
                    delay_ms = backoff_delay_ms(
                        event_log.retry_count, settings.RETRY_DELAY_BASE_MS
                    )
                    retry_event_notification_task.apply_async(
                        kwargs={
                            "request_id": request_id,
                            "event_log_id": str(event_log.id),
                        },
                        countdown=delay_ms / 1000,
                    )
                    queued_count += 1

                except Exception as e:
                    logger.error(
                        f"Failed to queue retry for event {event_log.id}: {str(e)}"
                    )
                    continue

            stalled_requeued = 0
            for event_log in stalled_events:
                try:
                    send_event_notification_task.apply_async(
                        kwargs={
                            "request_id": request_id,
                            "event_log_id": str(event_log.id),
                            "max_attempts": 1,
                        }
                    )
                    stalled_requeued += 1

                except Exception as e:
                    logger.error(
                        f"Failed to requeue stalled event {event_log.id}: {str(e)}"
                    )
                    continue

            logger.info(
                f"Event recovery completed: queued {queued_count} of {len(failed_events)} failed events, "
                f"requeued {stalled_requeued} of {len(stalled_events)} stalled events"
            )

            return {
                "success": True,
                "queued_count": queued_count,
                "total_found": len(failed_events),
                "stalled_requeued": stalled_requeued,
                "stalled_found": len(stalled_events),
                "request_id": request_id,
            }

        except Exception as e:
            logger.error(f"Event recovery task exception: {str(e)}")

            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
