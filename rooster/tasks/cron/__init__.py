from .hourly_event_scanner import hourly_event_scan_task
from .event_recovery import event_recovery_task
from .event_log_cleanup import event_log_cleanup_task

__all__ = [
    "hourly_event_scan_task",
    "event_recovery_task",
    "event_log_cleanup_task",
]
