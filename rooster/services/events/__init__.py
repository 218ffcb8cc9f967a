from .base import BaseEventTrigger
from .birthday_trigger import BirthdayTrigger
from .anniversary_trigger import AnniversaryTrigger
from .registry import (
    EventTriggerRegistry,
    create_default_registry,
    get_event_trigger_registry,
)

__all__ = [
    "BaseEventTrigger",
    "BirthdayTrigger",
    "AnniversaryTrigger",
    "EventTriggerRegistry",
    "create_default_registry",
    "get_event_trigger_registry",
]
