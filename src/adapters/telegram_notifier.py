"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance and fans a reminder out to every allowed
user chat.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError
from telegram.helpers import escape_markdown

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, chat_ids: list[int]) -> None:
        self._bot = bot
        self._chat_ids = list(chat_ids)

    async def notify(self, title: str, message: str) -> None:
        # Reminder names are free user text
        title = escape_markdown(title, version=1)
        message = escape_markdown(message, version=1)
        text = f"*{title}*\n{message}"
        for chat_id in self._chat_ids:
            try:
                await self._bot.send_message(
                    chat_id=chat_id, text=text, parse_mode="Markdown",
                )
            except TelegramError as exc:
                logger.warning("Notification to chat %d failed: %s", chat_id, exc)
