class DatabaseError(Exception):
    """Custom exception for database-related errors."""

    def __init__(self, message: str, error_code: str = "DB_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class BusinessLogicError(Exception):
    """Custom exception for business logic errors."""

    def __init__(self, message: str, error_code: str = "BLOC_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class NotFoundError(Exception):
    """Custom exception for resource not found errors."""

    def __init__(
        self, message: str = "Resource not found", error_code: str = "NOT_FOUND"
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class EventLogNotFoundError(NotFoundError):
    """Raised when an event log id does not resolve to a row."""

    def __init__(self, event_log_id: str):
        super().__init__(
            f"Event log not found: {event_log_id}", error_code="EVENT_LOG_NOT_FOUND"
        )
        self.event_log_id = event_log_id


class EventTriggerNotFoundError(NotFoundError):
    """Raised when no trigger is registered for an event type."""

    def __init__(self, event_type: str):
        super().__init__(
            f"No trigger registered for event type: {event_type}",
            error_code="EVENT_TRIGGER_NOT_FOUND",
        )
        self.event_type = event_type


class DuplicateTriggerError(BusinessLogicError):
    """Raised when two triggers claim the same event type."""

    def __init__(self, event_type: str):
        super().__init__(
            f"Trigger already registered for event type: {event_type}",
            error_code="DUPLICATE_TRIGGER",
        )
        self.event_type = event_type


class NotificationChannelError(Exception):
    """Custom exception for notification channel errors."""

    def __init__(self, message: str, error_code: str = "CHANNEL_ERROR"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
