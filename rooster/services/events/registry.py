from datetime import datetime
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from rooster.db.models import User
from rooster.utils.errors import DuplicateTriggerError, EventTriggerNotFoundError
from rooster.utils.logging import get_logger

from .base import BaseEventTrigger
from .birthday_trigger import create_birthday_trigger
from .anniversary_trigger import create_anniversary_trigger

logger = get_logger()


class EventTriggerRegistry:
    """Ordered mapping of event type -> trigger, built once at startup."""

    def __init__(self, triggers: Iterable[BaseEventTrigger] = ()):
        self._triggers: Dict[str, BaseEventTrigger] = {}
        for trigger in triggers:
            self.register_trigger(trigger)

    def register_trigger(self, trigger: BaseEventTrigger) -> None:
        """Register a trigger; each event type may be registered only once."""
        if not trigger.event_type:
            raise ValueError(f"Trigger {trigger!r} has no event type")
        if trigger.event_type in self._triggers:
            raise DuplicateTriggerError(trigger.event_type)

        self._triggers[trigger.event_type] = trigger
        logger.debug(f"Registered trigger for event type: {trigger.event_type}")

    def get_trigger(self, event_type: str) -> BaseEventTrigger:
        trigger = self._triggers.get(event_type)
        if trigger is None:
            raise EventTriggerNotFoundError(event_type)
        return trigger

    def triggers_for(
        self, user: User, now: Optional[datetime] = None
    ) -> List[Tuple[str, str]]:
        """
        Evaluate every registered trigger against the user.

        Returns:
            List of (event_type, message) for the triggers that fire. A trigger
            that raises is logged and skipped without affecting the others.
        """
        fired: List[Tuple[str, str]] = []
        for event_type, trigger in self._triggers.items():
            try:
                if trigger.should_trigger(user, now=now):
                    fired.append((event_type, trigger.build_message(user)))
            except Exception as e:
                logger.error(
                    f"Trigger {event_type} failed for user {user.id}: {str(e)}"
                )
                continue
        return fired

    def list_registered_types(self) -> List[str]:
        return list(self._triggers.keys())

    def is_registered(self, event_type: str) -> bool:
        return event_type in self._triggers

    def __len__(self) -> int:
        return len(self._triggers)


def create_default_registry() -> EventTriggerRegistry:
    registry = EventTriggerRegistry(
        [
            create_birthday_trigger(),
            create_anniversary_trigger(),
        ]
    )
    logger.info(
        f"Registered {len(registry)} event triggers: {', '.join(registry.list_registered_types())}"
    )
    return registry


@lru_cache(maxsize=1)
def get_event_trigger_registry() -> EventTriggerRegistry:
    """Process-wide registry, built on first use."""
    return create_default_registry()
