from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from rooster.db.models import User


class BaseEventTrigger(ABC):
    """A recurring per-user event: when it is due and what to say."""

    # Event type stored on the event log (unique per registry)
    event_type: str = ""
    # Informational only; firing is driven by the hourly scan
    schedule_time: str = "0 9 * * *"

    @abstractmethod
    def should_trigger(self, user: User, now: Optional[datetime] = None) -> bool:
        """Whether the event is due today in the user's timezone."""
        pass

    @abstractmethod
    def build_message(self, user: User) -> str:
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} event_type={self.event_type!r}>"
