import asyncio
from datetime import datetime
from typing import Optional

from rooster.celery import celery
from rooster.config.settings import settings
from rooster.db.session import get_sync_session
from rooster.services.event_log_service import EventLogService
from rooster.utils.context import set_request_id
from rooster.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def event_log_cleanup_task(self, request_id: str):
    """
    Daily task that deletes event logs older than the retention horizon
    (EVENT_LOG_RETENTION_YEARS, default one year).

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_event_log_cleanup(request_id))


async def _async_event_log_cleanup(request_id: str, now: Optional[datetime] = None):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            removed_count = EventLogService(db_session).cleanup_old_events(
                retention_years=settings.EVENT_LOG_RETENTION_YEARS, now=now
            )

            logger.info(f"Cleanup completed: removed {removed_count} old event logs")

            return {
                "success": True,
                "removed_count": removed_count,
                "request_id": request_id,
            }

        except Exception as e:
            db_session.rollback()
            logger.error(f"Event log cleanup task exception: {str(e)}")

            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
