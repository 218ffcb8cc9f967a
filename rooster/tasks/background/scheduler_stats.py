import asyncio

from rooster.celery import celery
from rooster.db.session import get_sync_session
from rooster.services.event_log_service import EventLogService
from rooster.services.events.registry import get_event_trigger_registry
from rooster.services.notifications.notification_service import (
    create_notification_service,
)
from rooster.services.user_service import UserService
from rooster.utils.datetime_utils import utc_isoformat
from rooster.utils.context import set_request_id
from rooster.utils.logging import get_logger

logger = get_logger()


@celery.task(bind=True, max_retries=0)
def scheduler_stats_task(self, request_id: str):
    """
    Collect a snapshot of scheduler state: event log counts by status and type,
    user counts per timezone, registered event types and delivery channels.

    Args:
        request_id: The request ID for tracking
    """
    return asyncio.run(_async_scheduler_stats(request_id))


async def _async_scheduler_stats(request_id: str):
    set_request_id(request_id)
    logger_ctx = logger.bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            stats = {
                "events": EventLogService(db_session).get_event_stats(),
                "users": UserService(db_session).get_stats(),
                "event_types": get_event_trigger_registry().list_registered_types(),
                "channels": create_notification_service().get_available_channels(),
                "collected_at": utc_isoformat(),
            }

            logger_ctx.info(
                f"Scheduler stats collected: {stats['events'].get('total', 0)} events, "
                f"{stats['users'].get('total', 0)} users"
            )

            return {"success": True, "stats": stats, "request_id": request_id}

        except Exception as e:
            logger_ctx.error(f"Scheduler stats task failed: {str(e)}")
            return {"success": False, "error": str(e), "request_id": request_id}
