"""SMS delivery through the Twilio REST API."""

import logging
from typing import Any, Dict

import httpx

from app.config import Settings, settings as default_settings
from app.core.exceptions import SmsDeliveryError

logger = logging.getLogger(__name__)


class SmsService:
    """Sends SMS via Twilio; unconfigured installs log and report not delivered."""

    def __init__(self, settings: Settings = default_settings, timeout: float = 15.0):
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_PHONE_NUMBER
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, to: str, body: str) -> Dict[str, Any]:
        """
        Send a text message.

        Raises:
            SmsDeliveryError: When the recipient is missing or Twilio rejects the message
        """
        if not to:
            raise SmsDeliveryError("SMS recipient is missing")

        if not self.configured:
            logger.warning(f"📵 Twilio not configured, skipping SMS to {to}")
            return {"delivered": False, "provider": None}

        url = f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    data={"To": to, "From": self.from_number, "Body": body},
                    auth=(self.account_sid, self.auth_token),
                )
                response.raise_for_status()
                sid = response.json().get("sid")
        except httpx.HTTPError as e:
            raise SmsDeliveryError(f"Twilio request failed: {e}") from e

        logger.info(f"📱 SMS sent to {to} (sid={sid})")
        return {"delivered": True, "provider": "twilio", "sid": sid}
