"""
Email delivery with ordered provider fallback
Brevo HTTP API first, SMTP (yagmail) second
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
import yagmail

from app.config import Settings, settings as default_settings
from app.core.exceptions import EmailDeliveryError

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: Optional[str] = None
    text: Optional[str] = None


@dataclass
class EmailResult:
    delivered: bool
    provider: Optional[str] = None
    message_id: Optional[str] = None
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivered": self.delivered,
            "provider": self.provider,
            "message_id": self.message_id,
            "errors": self.errors,
        }


class EmailSender(Protocol):
    name: str

    @property
    def configured(self) -> bool: ...

    async def send(self, message: EmailMessage) -> Optional[str]: ...


class BrevoSender:
    """Transactional email through the Brevo HTTP API."""

    name = "brevo"
    endpoint = "https://api.brevo.com/v3/smtp/email"

    def __init__(self, settings: Settings, timeout: float = 15.0):
        self.api_key = settings.BREVO_API_KEY
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    async def send(self, message: EmailMessage) -> Optional[str]:
        body = {
            "sender": {"email": self.from_email, "name": self.from_name},
            "to": [{"email": message.to}],
            "subject": message.subject,
        }
        if message.html:
            body["htmlContent"] = message.html
        if message.text:
            body["textContent"] = message.text

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.endpoint,
                headers={"api-key": self.api_key, "Content-Type": "application/json"},
                json=body,
            )
            response.raise_for_status()
            return response.json().get("messageId")


class SmtpSender:
    """Plain SMTP through yagmail (blocking, run in a worker thread)."""

    name = "smtp"

    def __init__(self, settings: Settings):
        self.user = settings.SMTP_USER
        self.password = settings.SMTP_PASSWORD
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def _send_blocking(self, message: EmailMessage) -> None:
        smtp = yagmail.SMTP(
            self.user,
            self.password,
            host=self.host,
            port=self.port,
            smtp_starttls=self.port == 587,
            smtp_ssl=self.port == 465,
        )
        try:
            smtp.send(to=message.to, subject=message.subject, contents=message.html or message.text or "")
        finally:
            smtp.close()

    async def send(self, message: EmailMessage) -> Optional[str]:
        await asyncio.to_thread(self._send_blocking, message)
        return None


class EmailService:
    """Tries each configured sender in order until one accepts the message."""

    def __init__(self, senders: List[EmailSender]):
        self.senders = senders

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "EmailService":
        return cls([BrevoSender(settings), SmtpSender(settings)])

    @property
    def configured(self) -> bool:
        return any(sender.configured for sender in self.senders)

    async def send(self, message: EmailMessage) -> EmailResult:
        """
        Send an email.

        Returns:
            EmailResult; ``delivered`` is False when no sender is configured

        Raises:
            EmailDeliveryError: When every configured sender failed
        """
        if not message.to:
            raise EmailDeliveryError("Email recipient is missing")

        active = [sender for sender in self.senders if sender.configured]
        if not active:
            logger.warning(f"📭 No email provider configured, skipping '{message.subject}' to {message.to}")
            return EmailResult(delivered=False)

        errors = []
        for sender in active:
            try:
                message_id = await sender.send(message)
                logger.info(f"📧 Email '{message.subject}' sent to {message.to} via {sender.name}")
                return EmailResult(delivered=True, provider=sender.name, message_id=message_id, errors=errors)
            except Exception as e:
                logger.warning(f"Email provider {sender.name} failed: {e}")
                errors.append({"provider": sender.name, "error": str(e)})

        raise EmailDeliveryError("All email providers failed", {"errors": errors})
