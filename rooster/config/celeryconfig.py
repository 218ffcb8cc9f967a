from celery.schedules import crontab
from .settings import settings

# Basic Celery Configuration
broker_url = settings.redis_url
result_backend = settings.redis_url

# Task Discovery
include = ["rooster.tasks"]

# Timezone Configuration
# Beat runs in UTC; local-time decisions are made per user timezone by the scanner
timezone = "UTC"
enable_utc = True

# Task Result Configuration
result_expires = 3600

# Task Serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

# Task Execution Configuration
task_track_started = True
task_time_limit = 10 * 60  # 10 minutes
task_soft_time_limit = 9 * 60  # 9 minutes

# Worker Configuration
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Task Retry Configuration
task_acks_late = True
task_reject_on_worker_lost = True
task_default_retry_delay = settings.DISPATCH_BACKOFF_BASE_MS // 1000
task_max_retries = settings.RETRY_ATTEMPTS

beat_schedule = {
    # Hourly scan - every hour on the hour, picks up zones where it is EVENT_CHECK_HOUR
    "hourly-event-scan": {
        "task": "rooster.tasks.cron.hourly_event_scanner.hourly_event_scan_task",
        "schedule": crontab(minute=0),
        "args": ("hourly_event_scan_cron",),
    },
    # Recovery - every 30 minutes
    "event-recovery": {
        "task": "rooster.tasks.cron.event_recovery.event_recovery_task",
        "schedule": crontab(minute="*/30"),
        "args": ("event_recovery_cron",),
    },
    # Retention cleanup - daily at 2:00 AM UTC
    "event-log-cleanup": {
        "task": "rooster.tasks.cron.event_log_cleanup.event_log_cleanup_task",
        "schedule": crontab(hour=2, minute=0),
        "args": ("event_log_cleanup_cron",),
    },
}

# Default Queue
task_default_queue = "rooster"

# Beat Scheduler Configuration
beat_schedule_filename = "tmp/celerybeat-schedule"
