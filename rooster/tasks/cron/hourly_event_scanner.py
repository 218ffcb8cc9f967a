import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from rooster.celery import celery
from rooster.config.settings import settings
from rooster.db.session import get_sync_session
from rooster.db.models import EventLog
from rooster.services.event_log_service import EventLogService
from rooster.services.events.registry import (
    EventTriggerRegistry,
    get_event_trigger_registry,
)
from rooster.services.user_service import UserService
from rooster.utils.datetime_utils import utc_now
from rooster.utils.timezone_utils import current_year, timezones_at_local_hour
from rooster.utils.context import set_request_id
from rooster.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def hourly_event_scan_task(self, request_id: str):
    """
    Hourly task that finds the timezones where it is currently EVENT_CHECK_HOUR
    and records and dispatches every recurring event due today for users there.

    For each matching timezone:
    1. Fetch the users in that timezone
    2. Evaluate every registered trigger against each user
    3. Create the event log for the local year (idempotent per user/event/year)
    4. Queue one delivery job per event log

    A failure in one timezone is logged and does not stop the others.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_hourly_event_scan(request_id))


async def _async_hourly_event_scan(request_id: str, now: Optional[datetime] = None):
    set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)
    now = now or utc_now()
    target_hour = settings.EVENT_CHECK_HOUR

    for db_session in get_sync_session():
        try:
            user_service = UserService(db_session)
            known_timezones = _get_known_timezones(user_service)
            target_timezones = timezones_at_local_hour(
                target_hour, known_timezones, now=now
            )

            logger.info(
                f"Found {len(target_timezones)} timezones at {target_hour}:00: {', '.join(target_timezones)}"
            )

            registry = get_event_trigger_registry()
            zone_summaries: List[Dict] = []
            failed_timezones: List[str] = []

            for timezone in target_timezones:
                try:
                    zone_summaries.append(
                        _process_timezone(
                            db_session=db_session,
                            timezone=timezone,
                            registry=registry,
                            now=now,
                            request_id=request_id,
                        )
                    )
                except Exception as e:
                    db_session.rollback()
                    failed_timezones.append(timezone)
                    logger.error(f"Error processing timezone {timezone}: {str(e)}")
                    continue

            users_matched = sum(s["users_matched"] for s in zone_summaries)
            events_recorded = sum(s["events_recorded"] for s in zone_summaries)
            jobs_queued = sum(s["jobs_queued"] for s in zone_summaries)

            logger.info(
                f"Hourly event scan completed: {len(target_timezones)} timezones, "
                f"{users_matched} users matched, {events_recorded} events recorded, "
                f"{jobs_queued} jobs queued, {len(failed_timezones)} timezones failed"
            )

            return {
                "success": True,
                "timezones": target_timezones,
                "failed_timezones": failed_timezones,
                "users_matched": users_matched,
                "events_recorded": events_recorded,
                "jobs_queued": jobs_queued,
                "scanned_at": now.isoformat(),
                "request_id": request_id,
            }

        except Exception as e:
            logger.error(f"Hourly event scan task exception: {str(e)}")

            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }


def _get_known_timezones(user_service: UserService) -> Set[str]:
    """Timezones in use by users plus any configured supported timezones."""
    zones = set(user_service.list_timezones())
    zones.update(settings.SUPPORTED_TIMEZONES or [])
    return zones


def _process_timezone(
    db_session: Session,
    timezone: str,
    registry: EventTriggerRegistry,
    now: datetime,
    request_id: str,
) -> Dict:
    logger = get_logger().bind(request_id=request_id)

    users = UserService(db_session).find_users_by_timezone(timezone)
    if not users:
        logger.debug(f"No users found for timezone: {timezone}")
        return _zone_summary(timezone, 0, 0, 0)

    # Year of the occurrence in local time, not server time
    event_year = current_year(timezone, now=now)
    event_logs = EventLogService(db_session)

    users_matched = 0
    recorded: List[EventLog] = []

    for user in users:
        fired = registry.triggers_for(user, now=now)
        if not fired:
            continue

        users_matched += 1
        for event_type, message in fired:
            try:
                recorded.append(
                    event_logs.create_if_absent(
                        user_id=user.id,
                        event_type=event_type,
                        event_year=event_year,
                        metadata={"timezone": timezone, "message": message},
                    )
                )
            except Exception as e:
                db_session.rollback()
                logger.error(
                    f"Failed to create event log for user {user.id}, event {event_type}: {str(e)}"
                )
                continue

    if users_matched == 0:
        logger.debug(f"No due events for timezone: {timezone}")
        return _zone_summary(timezone, 0, 0, 0)

    # Every event log above is committed before its job is queued
    jobs_queued = 0
    for event_log in recorded:
        try:
            _enqueue_dispatch(event_log.id, request_id)
            jobs_queued += 1
        except Exception as e:
            logger.error(
                f"Failed to queue notification job for event {event_log.id}: {str(e)}"
            )
            continue

    logger.info(
        f"Queued {jobs_queued} notification jobs for {users_matched} users in timezone: {timezone}"
    )
    return _zone_summary(timezone, users_matched, len(recorded), jobs_queued)


def _enqueue_dispatch(event_log_id: str, request_id: str) -> None:
    # Import here to avoid circular imports
    from rooster.tasks.background.event_notification_sender import (
        send_event_notification_task,
    )

    send_event_notification_task.apply_async(
        kwargs={"request_id": request_id, "event_log_id": str(event_log_id)}
    )


def _zone_summary(
    timezone: str, users_matched: int, events_recorded: int, jobs_queued: int
) -> Dict:
    return {
        "timezone": timezone,
        "users_matched": users_matched,
        "events_recorded": events_recorded,
        "jobs_queued": jobs_queued,
    }
