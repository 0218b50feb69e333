"""Notification ports — abstract interfaces for reaching the user.

Core modules depend on these protocols, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Local notification shown to the user (the always-available channel)."""

    async def notify(self, title: str, message: str) -> None: ...


class SmsPort(Protocol):
    """Outbound SMS."""

    async def send_sms(self, to: str, text: str) -> None: ...
