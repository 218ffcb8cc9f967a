from .base import BaseNotificationChannel
from .webhook_channel import WebhookChannel
from .email_channel import EmailChannel
from .notification_service import (
    DeliveryResult,
    NotificationService,
    create_notification_service,
)

__all__ = [
    "BaseNotificationChannel",
    "WebhookChannel",
    "EmailChannel",
    "DeliveryResult",
    "NotificationService",
    "create_notification_service",
]
