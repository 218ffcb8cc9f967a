import asyncio
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

from rooster.config.settings import settings
from rooster.utils.logging import get_logger

from .base import BaseNotificationChannel

logger = get_logger()


class EmailChannel(BaseNotificationChannel):
    """Sends the message to the configured notification inbox over SMTP."""

    channel_type = "email"

    def __init__(
        self,
        smtp_host: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_from: Optional[str] = None,
        recipient_address: Optional[str] = None,
        use_tls: Optional[bool] = None,
        timeout: float = 10.0,
    ):
        self.smtp_host = (smtp_host if smtp_host is not None else settings.SMTP_HOST).strip()
        self.smtp_port = smtp_port or settings.SMTP_PORT
        self.smtp_user = (smtp_user if smtp_user is not None else settings.SMTP_USER).strip()
        self.smtp_password = (
            smtp_password if smtp_password is not None else settings.SMTP_PASSWORD
        )
        self.smtp_from = (smtp_from if smtp_from is not None else settings.SMTP_FROM).strip()
        self.recipient_address = (
            recipient_address
            if recipient_address is not None
            else settings.NOTIFICATION_EMAIL_TO
        ).strip()
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_from and self.recipient_address)

    def missing_fields(self) -> List[str]:
        missing = []
        if not self.smtp_host:
            missing.append("SMTP_HOST")
        if not self.smtp_from:
            missing.append("SMTP_FROM")
        if not self.recipient_address:
            missing.append("NOTIFICATION_EMAIL_TO")
        return missing

    def build_email(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> EmailMessage:
        email_message = EmailMessage()
        email_message["From"] = self.smtp_from
        email_message["To"] = self.recipient_address
        kind = (recipient or {}).get("eventKind", "event")
        email_message["Subject"] = f"{settings.NAME}: {kind} notification"
        email_message.set_content(message)
        return email_message

    def _send(self, email_message: EmailMessage) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp_client:
            if self.use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_password)
            smtp_client.send_message(email_message)

    async def deliver(
        self, message: str, recipient: Optional[Dict[str, Any]] = None
    ) -> bool:
        if not self.configured:
            logger.warning(
                "Email channel skipped: missing configuration",
                channel=self.channel_type,
                reason="not_configured",
                missing_fields=self.missing_fields(),
            )
            return False

        try:
            await asyncio.to_thread(self._send, self.build_email(message, recipient))
            logger.info(f"Email notification sent to {self.recipient_address}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email notification: {str(e)}")
            return False
