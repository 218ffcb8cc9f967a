from datetime import datetime
from typing import Optional

from rooster.db.models import EventType, User
from rooster.utils.timezone_utils import is_event_due_today

from .base import BaseEventTrigger


class AnniversaryTrigger(BaseEventTrigger):
    """Fires on the user's anniversary date; users without one never trigger."""

    event_type = EventType.ANNIVERSARY.value
    schedule_time = "0 10 * * *"

    def should_trigger(self, user: User, now: Optional[datetime] = None) -> bool:
        if not user.anniversary_date:
            return False
        return is_event_due_today(user.anniversary_date, user.timezone, now=now)

    def build_message(self, user: User) -> str:
        return f"Happy Anniversary, {user.full_name}!"


def create_anniversary_trigger() -> AnniversaryTrigger:
    return AnniversaryTrigger()
