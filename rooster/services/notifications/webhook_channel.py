from typing import Any, Dict, Optional

import httpx

from rooster.config.settings import settings
from rooster.utils.datetime_utils import utc_isoformat
from rooster.utils.logging import get_logger

from .base import BaseNotificationChannel

logger = get_logger()


class WebhookChannel(BaseNotificationChannel):
    """POSTs `{message, timestamp, recipient}` as JSON to the configured URL."""

    channel_type = "webhook"

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = (
            webhook_url if webhook_url is not None else settings.WEBHOOK_URL
        ).strip()
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def build_payload(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return {
            "message": message,
            "timestamp": utc_isoformat(),
            "recipient": recipient,
        }

    async def deliver(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> bool:
        if not self.configured:
            logger.warning(
                "Webhook channel skipped: WEBHOOK_URL is not configured",
                channel=self.channel_type,
                reason="not_configured",
            )
            return False

        try:
            logger.debug(f"Sending webhook message to {self.webhook_url}")

            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.webhook_url,
                    json=self.build_payload(message, recipient),
                    headers={
                        "Content-Type": "application/json",
                        "User-Agent": f"{settings.NAME}/{settings.VERSION}",
                    },
                )

            if 200 <= response.status_code < 300:
                logger.info(f"Webhook message sent successfully to {self.webhook_url}")
                return True

            logger.error(f"Webhook returned non-2xx status: {response.status_code}")
            return False

        except httpx.TimeoutException as e:
            logger.error(f"Webhook request timed out after {self.timeout}s: {str(e)}")
            return False
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook message: {str(e)}")
            return False
