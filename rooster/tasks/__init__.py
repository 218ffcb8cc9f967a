from .background import *
from .cron import *

__all__ = [
    "send_event_notification_task",
    "retry_event_notification_task",
    "scheduler_stats_task",
    # Scheduled/Cron Tasks
    "hourly_event_scan_task",
    "event_recovery_task",
    "event_log_cleanup_task",
]
