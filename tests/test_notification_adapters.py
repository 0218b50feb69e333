"""Tests for the notification adapters — Telegram and Twilio."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from telegram.error import TelegramError

from src.adapters.telegram_notifier import TelegramNotifier
from src.adapters.twilio_sms import TwilioSmsSender, create_sms_sender
from src.config import settings


class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_sends_to_every_chat(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot, [1, 2])

        await notifier.notify("Event Today", "Standup at 09:30")

        assert bot.send_message.await_count == 2
        bot.send_message.assert_any_await(
            chat_id=2, text="*Event Today*\nStandup at 09:30", parse_mode="Markdown",
        )

    @pytest.mark.asyncio
    async def test_one_failed_chat_does_not_stop_others(self):
        bot = MagicMock()
        bot.send_message = AsyncMock(side_effect=[TelegramError("blocked"), None])
        notifier = TelegramNotifier(bot, [1, 2])

        await notifier.notify("Event Today", "Standup at 09:30")

        assert bot.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_markdown_in_names_is_escaped(self):
        bot = MagicMock()
        bot.send_message = AsyncMock()
        notifier = TelegramNotifier(bot, [1])

        await notifier.notify("Event Today", "team_sync at 09:30")

        bot.send_message.assert_awaited_once_with(
            chat_id=1, text="*Event Today*\nteam\\_sync at 09:30", parse_mode="Markdown",
        )


class TestTwilioSmsSender:
    @pytest.mark.asyncio
    async def test_send_sms_uses_twilio_client(self):
        with patch("src.adapters.twilio_sms.Client") as client_cls:
            client_cls.return_value.messages.create.return_value = MagicMock(sid="SM123")
            sender = TwilioSmsSender("AC123", "token", "+15550000000")
            await sender.send_sms("+15551112222", "Reminder: Standup at 09:30")

        client_cls.assert_called_once_with("AC123", "token")
        client_cls.return_value.messages.create.assert_called_once_with(
            to="+15551112222", from_="+15550000000", body="Reminder: Standup at 09:30",
        )

    @pytest.mark.asyncio
    async def test_twilio_error_propagates(self):
        with patch("src.adapters.twilio_sms.Client") as client_cls:
            client_cls.return_value.messages.create.side_effect = RuntimeError("21211")
            sender = TwilioSmsSender("AC123", "token", "+15550000000")
            with pytest.raises(RuntimeError):
                await sender.send_sms("bad", "x")


class TestCreateSmsSender:
    def test_disabled_returns_none(self, monkeypatch):
        monkeypatch.setattr(settings, "SMS_ENABLED", False)
        assert create_sms_sender() is None

    def test_incomplete_settings_return_none(self, monkeypatch):
        monkeypatch.setattr(settings, "SMS_ENABLED", True)
        monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", "")
        assert create_sms_sender() is None

    def test_configured_returns_sender(self, monkeypatch):
        monkeypatch.setattr(settings, "SMS_ENABLED", True)
        monkeypatch.setattr(settings, "SMS_RECIPIENT", "+15551112222")
        monkeypatch.setattr(settings, "TWILIO_ACCOUNT_SID", "AC123")
        monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "token")
        monkeypatch.setattr(settings, "TWILIO_FROM_NUMBER", "+15550000000")
        with patch("src.adapters.twilio_sms.Client"):
            assert isinstance(create_sms_sender(), TwilioSmsSender)
