"""Tests for src.bot.telegram_bot — command handlers and authorization.

Handlers run against a real EventService on a temp DB with a fake timer;
the sync engine is mocked.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.bot.telegram_bot import (
    _format_event,
    _format_last_sync,
    _parse_add_args,
    cmd_add,
    cmd_alerts,
    cmd_delete,
    cmd_events,
    cmd_lastsync,
    cmd_start,
    cmd_sync,
    cmd_today,
)
from src.core.event_service import EventService
from src.core.reminder_delivery import ReminderDelivery
from src.core.sync_engine import MSG_PARTIAL, MSG_SUCCESS, SyncResult, SyncStatusCode
from src.data.models import Event, RecurrenceType, SyncStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_update(text="", user_id=12345):
    """Create a mock Update with a text message from an authorized user."""
    update = MagicMock()
    update.message.text = text
    update.effective_user.id = user_id
    update.message.reply_text = AsyncMock()
    return update


def _make_context(service=None, sync_engine=None, args=None):
    """Create a mock context with the services in bot_data."""
    context = MagicMock()
    context.args = args or []
    context.bot_data = {
        "service": service or MagicMock(),
        "sync_engine": sync_engine or MagicMock(),
    }
    return context


def _last_reply(update):
    return update.message.reply_text.call_args[0][0]


@pytest.fixture
def notifier():
    return AsyncMock()


@pytest.fixture
def service(event_db, fake_timer, fixed_now, notifier):
    return EventService(event_db, fake_timer, ReminderDelivery(notifier), now=lambda: fixed_now)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestParseAddArgs:
    def test_simple(self):
        assert _parse_add_args(["Dentist", "2026-03-12", "16:00"]) == (
            "Dentist", "2026-03-12", "16:00", RecurrenceType.NONE,
        )

    def test_multi_word_name_and_recurrence(self):
        assert _parse_add_args(["Team", "standup", "2026-03-12", "09:30", "daily"]) == (
            "Team standup", "2026-03-12", "09:30", RecurrenceType.DAILY,
        )

    def test_too_few_parts(self):
        assert _parse_add_args(["2026-03-12", "09:30"]) is None
        assert _parse_add_args(["2026-03-12", "09:30", "weekly"]) is None
        assert _parse_add_args([]) is None


class TestFormatting:
    def test_format_recurring_event(self):
        event = Event(
            id=3, name="Gym", date="2026-03-12", time="07:00",
            recurrence_type=RecurrenceType.WEEKLY, sync_status=SyncStatus.SYNCED,
        )
        text = _format_event(event)
        assert "Gym" in text
        assert "weekly" in text
        assert "[SYNCED]" in text

    def test_format_escapes_markdown(self):
        event = Event(
            id=4, name="team_sync *prep*", date="2026-03-12", time="07:00",
            sync_status=SyncStatus.LOCAL_ONLY,
        )
        text = _format_event(event)
        assert "team\\_sync \\*prep\\*" in text
        assert text.endswith("\\[LOCAL\\_ONLY]")

    def test_last_sync_never(self):
        assert _format_last_sync(0) == "Never synced."

    def test_last_sync_formatted(self):
        # 2023-11-14 22:13:20 UTC
        assert _format_last_sync(1_700_000_000_000) == "Last sync: 2023-11-14 22:13"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_unauthorized_user_is_ignored(self):
        sync_engine = MagicMock()
        update = _make_update("/sync", user_id=999)
        context = _make_context(sync_engine=sync_engine)

        await cmd_sync(update, context)

        update.message.reply_text.assert_not_awaited()
        sync_engine.perform_sync.assert_not_called()


# ---------------------------------------------------------------------------
# Event commands
# ---------------------------------------------------------------------------


class TestEventCommands:
    @pytest.mark.asyncio
    async def test_add_creates_event_and_arms_timer(self, service, event_db, fake_timer):
        update = _make_update()
        context = _make_context(service=service, args=["Dentist", "2026-03-12", "16:00"])

        await cmd_add(update, context)

        events = event_db.list_all()
        assert [e.name for e in events] == ["Dentist"]
        assert f"event-{events[0].id}" in fake_timer.armed
        assert "Event added" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_add_usage_on_missing_args(self, service, event_db):
        update = _make_update()
        await cmd_add(update, _make_context(service=service, args=["Dentist"]))
        assert _last_reply(update).startswith("Usage: /add")
        assert event_db.list_all() == []

    @pytest.mark.asyncio
    async def test_add_reports_invalid_date(self, service, event_db):
        update = _make_update()
        context = _make_context(service=service, args=["Dentist", "12/03/2026", "16:00"])

        await cmd_add(update, context)

        assert "YYYY-MM-DD" in _last_reply(update)
        assert event_db.list_all() == []

    @pytest.mark.asyncio
    async def test_events_lists_all(self, service):
        service.add_event("Dentist", "2026-03-12", "16:00")
        update = _make_update()

        await cmd_events(update, _make_context(service=service))

        assert "Dentist" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_events_empty(self, service):
        update = _make_update()
        await cmd_events(update, _make_context(service=service))
        assert _last_reply(update) == "No events yet."

    @pytest.mark.asyncio
    async def test_today_shows_only_today(self, service):
        service.add_event("Standup", "2026-03-10", "09:30")
        service.add_event("Dentist", "2026-03-12", "16:00")
        update = _make_update()

        await cmd_today(update, _make_context(service=service))

        reply = _last_reply(update)
        assert "Standup" in reply
        assert "Dentist" not in reply

    @pytest.mark.asyncio
    async def test_today_escapes_event_names(self, service):
        service.add_event("team_sync", "2026-03-10", "09:30")
        update = _make_update()

        await cmd_today(update, _make_context(service=service))

        assert "team\\_sync" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_delete(self, service, event_db):
        event = service.add_event("Dentist", "2026-03-12", "16:00")
        update = _make_update()

        await cmd_delete(update, _make_context(service=service, args=[str(event.id)]))

        assert event_db.get_event(event.id) is None
        assert "deleted" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_delete_invalid_id(self, service):
        update = _make_update()
        await cmd_delete(update, _make_context(service=service, args=["abc"]))
        assert "Invalid event ID" in _last_reply(update)

    @pytest.mark.asyncio
    async def test_delete_missing_id(self, service):
        update = _make_update()
        await cmd_delete(update, _make_context(service=service, args=["999"]))
        assert _last_reply(update) == "No event with ID 999."

    @pytest.mark.asyncio
    async def test_alerts_sends_todays_reminders(self, service, notifier):
        service.add_event("Standup", "2026-03-10", "09:30")
        update = _make_update()

        await cmd_alerts(update, _make_context(service=service))

        notifier.notify.assert_awaited_once_with("Event Today", "Standup at 09:30")
        assert _last_reply(update) == "Today's alerts sent."

    @pytest.mark.asyncio
    async def test_alerts_with_nothing_today(self, service, notifier):
        update = _make_update()
        await cmd_alerts(update, _make_context(service=service))
        notifier.notify.assert_not_awaited()
        assert _last_reply(update) == "No events for today."


# ---------------------------------------------------------------------------
# Sync commands
# ---------------------------------------------------------------------------


class TestSyncCommands:
    @pytest.mark.asyncio
    async def test_start_requests_background_sync_and_reports(self):
        sync_engine = MagicMock()
        update = _make_update("/start")

        await cmd_start(update, _make_context(sync_engine=sync_engine))

        sync_engine.request_sync.assert_called_once()
        callback = sync_engine.request_sync.call_args[0][0]
        await callback(SyncResult(SyncStatusCode.SUCCESS, MSG_SUCCESS))
        assert _last_reply(update) == MSG_SUCCESS

    @pytest.mark.asyncio
    async def test_sync_reports_result(self):
        sync_engine = MagicMock()
        sync_engine.perform_sync = AsyncMock(return_value=SyncResult(
            SyncStatusCode.PARTIAL, MSG_PARTIAL, uploaded=2, downloaded=0,
        ))
        update = _make_update("/sync")

        await cmd_sync(update, _make_context(sync_engine=sync_engine))

        assert _last_reply(update) == f"{MSG_PARTIAL} (2 uploaded, 0 downloaded)"

    @pytest.mark.asyncio
    async def test_lastsync_never(self):
        sync_engine = MagicMock()
        sync_engine.last_sync_timestamp = AsyncMock(return_value=0)
        update = _make_update("/lastsync")

        await cmd_lastsync(update, _make_context(sync_engine=sync_engine))

        assert _last_reply(update) == "Never synced."
