from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from rooster.db.models import EventLog, EventLogStatus
from rooster.services.events.registry import EventTriggerRegistry
from rooster.utils.datetime_utils import naive_utc_now, to_naive_utc
from rooster.utils.errors import DatabaseError, EventLogNotFoundError
from rooster.utils.logging import get_logger

logger = get_logger()


class EventLogService:
    """
    Idempotent store of (user, event type, year) occurrences and their delivery state.

    The unique constraint on (user_id, event_type, event_year) is the dedup
    guarantee; the read before insert only saves a round trip in the common case.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def _find_by_key(
        self, user_id: str, event_type: str, event_year: int
    ) -> Optional[EventLog]:
        result = self.db.execute(
            select(EventLog).where(
                EventLog.user_id == user_id,
                EventLog.event_type == event_type,
                EventLog.event_year == event_year,
            )
        )
        return result.scalar_one_or_none()

    def create_if_absent(
        self,
        user_id: str,
        event_type: str,
        event_year: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EventLog:
        """
        Return the event log for the key, creating it in PENDING if it does not exist.

        Concurrent callers racing on the same key all get the same row back: the
        loser of the insert race hits the unique constraint, rolls back and
        re-reads the winner's row.
        """
        existing = self._find_by_key(user_id, event_type, event_year)
        if existing:
            logger.debug(
                f"Event log already exists: {user_id}-{event_type}-{event_year}"
            )
            return existing

        event_log = EventLog(
            user_id=user_id,
            event_type=event_type,
            event_year=event_year,
            status=EventLogStatus.PENDING,
            retry_count=0,
            event_metadata=metadata,
        )
        self.db.add(event_log)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            existing = self._find_by_key(user_id, event_type, event_year)
            if existing is None:
                raise DatabaseError(
                    f"Could not create event log for {user_id}-{event_type}-{event_year}: {str(e.orig)}",
                    error_code="EVENT_LOG_CREATE_FAILED",
                ) from e
            logger.debug(
                f"Lost create race for {user_id}-{event_type}-{event_year}, using existing row"
            )
            return existing

        logger.info(
            f"Created event log: {event_log.id} for user {user_id}, event {event_type}"
        )
        return event_log

    def get_by_id(self, event_log_id: str) -> Optional[EventLog]:
        result = self.db.execute(
            select(EventLog)
            .options(selectinload(EventLog.user))
            .where(EventLog.id == event_log_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def update_status(
        self,
        event_log_id: str,
        status: EventLogStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """
        Move an event log to `status`.

        SENT stamps sent_at, FAILED records the error text and RETRY increments
        retry_count inside the UPDATE statement itself.
        """
        values: Dict[str, Any] = {"status": status, "updated_at": naive_utc_now()}

        if status == EventLogStatus.SENT:
            values["sent_at"] = naive_utc_now()

        if status == EventLogStatus.FAILED:
            values["error_message"] = error_message

        if status == EventLogStatus.RETRY:
            values["retry_count"] = EventLog.retry_count + 1

        result = self.db.execute(
            update(EventLog)
            .where(EventLog.id == event_log_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise EventLogNotFoundError(event_log_id)

        self.db.commit()
        logger.debug(f"Updated event {event_log_id} status to {status.value}")

    def pending_entries(
        self,
        limit: int = 100,
        updated_before: Optional[datetime] = None,
        include_retry: bool = False,
    ) -> List[EventLog]:
        """
        Pending event logs, oldest first.

        Args:
            limit: Maximum number of entries returned
            updated_before: Only entries not touched since this instant
            include_retry: Also return RETRY entries awaiting their attempt
        """
        statuses = [EventLogStatus.PENDING]
        if include_retry:
            statuses.append(EventLogStatus.RETRY)

        query = (
            select(EventLog)
            .options(selectinload(EventLog.user))
            .where(EventLog.status.in_(statuses))
        )
        if updated_before is not None:
            query = query.where(EventLog.updated_at < to_naive_utc(updated_before))

        result = self.db.execute(
            query.order_by(EventLog.created_at.asc()).limit(limit)
        )
        return list(result.scalars().all())

    def failed_eligible_for_retry(
        self,
        max_retries: int = 3,
        cool_down: timedelta = timedelta(minutes=5),
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> List[EventLog]:
        """
        FAILED event logs with retries left whose last update is older than the
        cool-down window.
        """
        retry_after = to_naive_utc(now) if now else naive_utc_now()
        retry_after = retry_after - cool_down

        result = self.db.execute(
            select(EventLog)
            .where(
                EventLog.status == EventLogStatus.FAILED,
                EventLog.retry_count < max_retries,
                EventLog.updated_at < retry_after,
            )
            .order_by(EventLog.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    def purge_older_than(self, horizon: datetime) -> int:
        """Delete every event log created before `horizon`; returns the number removed."""
        result = self.db.execute(
            delete(EventLog)
            .where(EventLog.created_at < to_naive_utc(horizon))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        removed = result.rowcount or 0
        logger.info(f"Cleaned up {removed} old event logs")
        return removed

    def cleanup_old_events(
        self, retention_years: int = 1, now: Optional[datetime] = None
    ) -> int:
        horizon = (to_naive_utc(now) if now else naive_utc_now()) - relativedelta(
            years=retention_years
        )
        return self.purge_older_than(horizon)

    def get_message_for_event(
        self, event_log: EventLog, registry: EventTriggerRegistry
    ) -> str:
        """
        Message for an event log. The message cached at creation wins so content
        stays stable even if the trigger's wording changes later.
        """
        cached = event_log.cached_message
        if cached:
            return cached

        trigger = registry.get_trigger(event_log.event_type)
        return trigger.build_message(event_log.user)

    def get_event_stats(self) -> Dict[str, Any]:
        rows = self.db.execute(
            select(
                EventLog.event_type,
                EventLog.status,
                func.count().label("count"),
            ).group_by(EventLog.event_type, EventLog.status)
        ).all()
        total = self.db.scalar(select(func.count()).select_from(EventLog)) or 0

        return {
            "total": total,
            "by_type_and_status": [
                {"event_type": event_type, "status": status.value, "count": count}
                for event_type, status, count in rows
            ],
        }
