"""Twilio SMS adapter — implements SmsPort.

The twilio client is synchronous, so each send is wrapped with
asyncio.to_thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging

from twilio.rest import Client

logger = logging.getLogger(__name__)


class TwilioSmsSender:
    """Twilio implementation of SmsPort."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str) -> None:
        self._from_number = from_number
        self._client = Client(account_sid, auth_token)

    async def send_sms(self, to: str, text: str) -> None:
        message = await asyncio.to_thread(
            self._client.messages.create,
            to=to,
            from_=self._from_number,
            body=text,
        )
        logger.info("SMS sent to %s (sid=%s)", to, message.sid)


def create_sms_sender() -> TwilioSmsSender | None:
    """Return a sender when SMS reminders are enabled and configured, else None."""
    from src.config import settings

    if not settings.SMS_ENABLED:
        return None
    if not (
        settings.TWILIO_ACCOUNT_SID
        and settings.TWILIO_AUTH_TOKEN
        and settings.TWILIO_FROM_NUMBER
        and settings.SMS_RECIPIENT
    ):
        logger.warning("SMS_ENABLED is set but Twilio settings are incomplete; SMS disabled")
        return None
    return TwilioSmsSender(
        settings.TWILIO_ACCOUNT_SID,
        settings.TWILIO_AUTH_TOKEN,
        settings.TWILIO_FROM_NUMBER,
    )
