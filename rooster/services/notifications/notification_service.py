import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from rooster.config.settings import settings
from rooster.db.models import EventLog
from rooster.utils.datetime_utils import utc_isoformat, utc_now
from rooster.utils.errors import NotificationChannelError
from rooster.utils.logging import get_logger

from .base import BaseNotificationChannel
from .email_channel import EmailChannel
from .webhook_channel import WebhookChannel

logger = get_logger()


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    channel: str
    reason: Optional[str] = None

    @classmethod
    def ok(cls, channel: str) -> "DeliveryResult":
        return cls(success=True, channel=channel)

    @classmethod
    def failed(cls, channel: str, reason: str) -> "DeliveryResult":
        return cls(success=False, channel=channel, reason=reason)


class NotificationService:
    """Selects a channel by name and turns every outcome into a DeliveryResult."""

    def __init__(
        self,
        channels: Iterable[BaseNotificationChannel],
        default_channel: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._channels: Dict[str, BaseNotificationChannel] = {}
        for channel in channels:
            if channel.channel_type in self._channels:
                raise NotificationChannelError(
                    f"Channel already registered: {channel.channel_type}",
                    error_code="DUPLICATE_CHANNEL",
                )
            self._channels[channel.channel_type] = channel

        self.default_channel = default_channel or settings.DEFAULT_NOTIFICATION_CHANNEL
        self.timeout = timeout if timeout is not None else settings.DELIVERY_TIMEOUT_SECONDS

        logger.debug(
            f"Registered {len(self._channels)} notification channels: {', '.join(self._channels)}"
        )

    async def send_notification(
        self,
        message: str,
        channel_type: Optional[str] = None,
        recipient: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        channel_type = channel_type or self.default_channel
        channel = self._channels.get(channel_type)

        if not channel:
            logger.error(f"Notification channel not found: {channel_type}")
            return DeliveryResult.failed(
                channel_type, f"Notification channel not found: {channel_type}"
            )

        if not channel.configured:
            # Still call deliver so the channel logs its own configuration skip
            await channel.deliver(message, recipient)
            return DeliveryResult.failed(
                channel_type, f"Notification channel not configured: {channel_type}"
            )

        try:
            delivered = await asyncio.wait_for(
                channel.deliver(message, recipient), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Notification via {channel_type} timed out after {self.timeout}s"
            )
            return DeliveryResult.failed(
                channel_type, f"Delivery via {channel_type} timed out after {self.timeout}s"
            )
        except Exception as e:
            logger.error(f"Failed to send notification via {channel_type}: {str(e)}")
            return DeliveryResult.failed(channel_type, str(e))

        if delivered:
            return DeliveryResult.ok(channel_type)
        return DeliveryResult.failed(
            channel_type, f"Failed to send notification via {channel_type}"
        )

    async def send_event_notification(
        self, event_log: EventLog, message: str, channel_type: Optional[str] = None
    ) -> DeliveryResult:
        recipient = {
            "userId": event_log.user_id,
            "eventKind": event_log.event_type,
            "periodYear": event_log.event_year,
        }
        return await self.send_notification(message, channel_type, recipient)

    def get_available_channels(self) -> List[str]:
        return list(self._channels.keys())

    async def test_channel(self, channel_type: str) -> DeliveryResult:
        """Send a timestamped test message through one channel."""
        message = f"Test message from Rooster - {utc_isoformat(utc_now())}"
        return await self.send_notification(message, channel_type)


def create_notification_service() -> NotificationService:
    timeout = settings.DELIVERY_TIMEOUT_SECONDS
    return NotificationService(
        channels=[
            WebhookChannel(timeout=timeout),
            EmailChannel(timeout=timeout),
        ],
        default_channel=settings.DEFAULT_NOTIFICATION_CHANNEL,
        timeout=timeout,
    )
