"""Reminder delivery — SMS first, local notification as the fallback.

Best-effort side channel: a failure here is logged and swallowed, and it
never affects rescheduling.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.data.models import FiringPayload
    from src.ports.notification_port import NotificationPort, SmsPort

logger = logging.getLogger(__name__)


class ReminderDelivery:
    """Delivers one reminder per fired occurrence."""

    def __init__(
        self,
        notifier: NotificationPort,
        sms: SmsPort | None = None,
        sms_recipient: str = "",
    ) -> None:
        self._notifier = notifier
        self._sms = sms
        self._sms_recipient = sms_recipient

    @property
    def sms_enabled(self) -> bool:
        return self._sms is not None and bool(self._sms_recipient)

    async def deliver(self, payload: FiringPayload) -> None:
        if self.sms_enabled:
            try:
                await self._sms.send_sms(
                    self._sms_recipient,
                    f"Reminder: {payload.name} at {payload.time}",
                )
                return
            except Exception as exc:
                logger.warning("SMS reminder for '%s' failed: %s", payload.name, exc)
                await self._notify(
                    "SMS failed", f"Could not send SMS for event: {payload.name}",
                )
                return

        await self._notify("Event Today", f"{payload.name} at {payload.time}")

    async def _notify(self, title: str, message: str) -> None:
        try:
            await self._notifier.notify(title, message)
        except Exception as exc:
            logger.error("Notification '%s' failed: %s", title, exc)
