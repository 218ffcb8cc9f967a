from .event_notification_sender import (
    send_event_notification_task,
    retry_event_notification_task,
)
from .scheduler_stats import scheduler_stats_task

__all__ = [
    "send_event_notification_task",
    "retry_event_notification_task",
    "scheduler_stats_task",
]
