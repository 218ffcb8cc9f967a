from datetime import datetime
from typing import Optional

from rooster.db.models import EventType, User
from rooster.utils.timezone_utils import is_event_due_today

from .base import BaseEventTrigger


class BirthdayTrigger(BaseEventTrigger):
    event_type = EventType.BIRTHDAY.value
    schedule_time = "0 9 * * *"

    def should_trigger(self, user: User, now: Optional[datetime] = None) -> bool:
        return is_event_due_today(user.birthday, user.timezone, now=now)

    def build_message(self, user: User) -> str:
        return f"Hey, {user.full_name} it's your birthday"


def create_birthday_trigger() -> BirthdayTrigger:
    return BirthdayTrigger()
