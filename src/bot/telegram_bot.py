"""
Reminder Sync — Telegram Bot.

Telegram is the user surface: adding and listing events, firing today's
alerts by hand, and triggering a sync. Reminders themselves arrive through
the same chat when their timers fire.

Security-first: unauthorized users are silently ignored. An authorized
/start counts as signing in and kicks off a background sync.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import Update
from telegram.helpers import escape_markdown
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
)

from src.config import settings
from src.core.event_service import EventService, InvalidEventError
from src.core.sync_engine import SyncEngine, SyncResult
from src.data.db import StoreError
from src.data.models import Event, RecurrenceType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, None]],
) -> Callable[..., Coroutine[Any, Any, None]]:
    """Decorator that silently ignores messages from unauthorized users.

    Does NOT send any response to strangers — the bot must not reveal
    its existence to unauthorized users.
    """

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _md(text: str) -> str:
    """Escape user or stored text for parse_mode="Markdown"."""
    return escape_markdown(text, version=1)


def _format_event(event: Event) -> str:
    line = f"`{event.id}` — {_md(event.name)} ({_md(event.date)} {_md(event.time)})"
    if event.recurrence_type is not RecurrenceType.NONE:
        line += f" 🔁 {event.recurrence_type.value.lower()}"
    return f"{line} {_md(f'[{event.sync_status.value}]')}"


def _format_last_sync(timestamp_ms: int) -> str:
    if timestamp_ms <= 0:
        return "Never synced."
    when = datetime.fromtimestamp(timestamp_ms / 1000, ZoneInfo(settings.TIMEZONE))
    return f"Last sync: {when.strftime('%Y-%m-%d %H:%M')}"


def _parse_add_args(
    args: list[str],
) -> tuple[str, str, str, RecurrenceType] | None:
    """Split /add arguments: <name...> <YYYY-MM-DD> <HH:MM> [recurrence].

    The name may contain spaces, so fields are taken from the end.
    """
    parts = list(args)
    recurrence = RecurrenceType.NONE
    if parts and parts[-1].upper() in RecurrenceType.__members__:
        recurrence = RecurrenceType(parts.pop().upper())
    if len(parts) < 3:
        return None
    time_text = parts.pop()
    date_text = parts.pop()
    return " ".join(parts), date_text, time_text, recurrence


def _service(context: ContextTypes.DEFAULT_TYPE) -> EventService:
    return context.bot_data["service"]


def _sync_engine(context: ContextTypes.DEFAULT_TYPE) -> SyncEngine:
    return context.bot_data["sync_engine"]


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — welcome message, then a background sync."""
    await update.message.reply_text(
        "Welcome to *Reminder Sync*!\n\n"
        "• /add <name> <YYYY-MM-DD> <HH:MM> \\[daily|weekly|monthly]\n"
        "• /events or /today to see what's scheduled\n"
        "• /sync to sync with the cloud\n\n"
        "Syncing your events now…",
        parse_mode="Markdown",
    )

    async def _report(result: SyncResult) -> None:
        await update.message.reply_text(result.message)

    _sync_engine(context).request_sync(_report)


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/add <name> <YYYY-MM-DD> <HH:MM> \\[none|daily|weekly|monthly] — Add an event\n"
        "/events — List all events\n"
        "/today — View today's events\n"
        "/delete <id> — Delete an event\n"
        "/alerts — Send today's reminders now\n"
        "/sync — Sync with the cloud\n"
        "/lastsync — When the last sync happened\n"
        "/help — Show this message",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /add — create an event and arm its reminder."""
    parsed = _parse_add_args(context.args or [])
    if parsed is None:
        await update.message.reply_text(
            "Usage: /add <name> <YYYY-MM-DD> <HH:MM> [none|daily|weekly|monthly]"
        )
        return

    name, date_text, time_text, recurrence = parsed
    try:
        event = _service(context).add_event(name, date_text, time_text, "", recurrence)
    except InvalidEventError as exc:
        await update.message.reply_text(str(exc))
        return
    except StoreError as exc:
        logger.error("/add error: %s", exc)
        await update.message.reply_text("Couldn't save the event. Please try again.")
        return

    await update.message.reply_text(
        f"✅ Event added: {_format_event(event)}", parse_mode="Markdown",
    )


@authorized_only
async def cmd_events(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /events — list all events, ordered by date and time."""
    try:
        events = _service(context).list_events()
    except StoreError as exc:
        logger.error("/events error: %s", exc)
        await update.message.reply_text("Couldn't load events. Please try again.")
        return

    if not events:
        await update.message.reply_text("No events yet.")
        return

    lines = ["*Events:*\n"] + [_format_event(e) for e in events]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_today(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /today — show today's events."""
    try:
        events = _service(context).todays_events()
    except StoreError as exc:
        logger.error("/today error: %s", exc)
        await update.message.reply_text("Couldn't load today's events. Please try again.")
        return

    if not events:
        await update.message.reply_text("No events for today.")
        return

    lines = ["*Today's events:*\n"] + [f"• {_md(e.time)}  {_md(e.name)}" for e in events]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_delete(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /delete <id> — remove an event."""
    args = context.args
    if not args:
        await update.message.reply_text("Usage: /delete <event_id>\nUse /events to see IDs.")
        return

    try:
        event_id = int(args[0])
    except ValueError:
        await update.message.reply_text("Invalid event ID. Use /events to see valid IDs.")
        return

    try:
        deleted = _service(context).delete_event(event_id)
    except StoreError as exc:
        logger.error("/delete error: %s", exc)
        await update.message.reply_text("Couldn't delete the event. Please try again.")
        return

    if deleted:
        await update.message.reply_text(f"🗑 Event {event_id} deleted.")
    else:
        await update.message.reply_text(f"No event with ID {event_id}.")


@authorized_only
async def cmd_alerts(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /alerts — deliver today's reminders right away."""
    try:
        count = await _service(context).send_todays_alerts()
    except StoreError as exc:
        logger.error("/alerts error: %s", exc)
        await update.message.reply_text("Couldn't load today's events. Please try again.")
        return

    if count == 0:
        await update.message.reply_text("No events for today.")
    else:
        await update.message.reply_text("Today's alerts sent.")


@authorized_only
async def cmd_sync(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /sync — run one sync pass and report the result."""
    await update.message.reply_text("Syncing…")
    result = await _sync_engine(context).perform_sync()
    await update.message.reply_text(
        f"{result.message} ({result.uploaded} uploaded, {result.downloaded} downloaded)"
    )


@authorized_only
async def cmd_lastsync(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /lastsync — show when the last successful sync happened."""
    try:
        timestamp = await _sync_engine(context).last_sync_timestamp()
    except (StoreError, asyncio.TimeoutError) as exc:
        logger.error("/lastsync error: %s", exc)
        await update.message.reply_text("Couldn't read sync status. Please try again.")
        return
    await update.message.reply_text(_format_last_sync(timestamp))


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


async def _post_init(app: Application) -> None:
    """Re-arm reminder timers lost with the previous process."""
    service: EventService = app.bot_data["service"]
    rearmed = service.recover_timers()
    logger.info("Startup recovery complete (%d timer(s) re-armed)", rearmed)


async def _post_shutdown(app: Application) -> None:
    """Let any in-flight sync pass finish before exiting."""
    await app.bot_data["sync_engine"].shutdown()
    await app.bot_data["dispatcher"].drain()


def build_app(db_path: str | None = None) -> Application:
    """Build the Telegram Application and wire the core services.

    Args:
        db_path: SQLite path. Defaults to settings.DATABASE_PATH.
    """
    from src.adapters.http_remote import HttpRemoteClient
    from src.adapters.job_queue_timer import JobQueueTimer
    from src.adapters.telegram_notifier import TelegramNotifier
    from src.adapters.twilio_sms import create_sms_sender
    from src.core.firing import FiringDispatcher
    from src.core.recurrence import RecurrenceEngine
    from src.core.reminder_delivery import ReminderDelivery
    from src.data.db import EventDB

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )

    db = EventDB(db_path)
    timer = JobQueueTimer(app.job_queue)
    delivery = ReminderDelivery(
        TelegramNotifier(app.bot, settings.ALLOWED_USER_IDS),
        sms=create_sms_sender(),
        sms_recipient=settings.SMS_RECIPIENT,
    )
    recurrence = RecurrenceEngine(db, timer)
    dispatcher = FiringDispatcher(db, delivery, recurrence)
    timer.bind(dispatcher.handle)

    app.bot_data["service"] = EventService(db, timer, delivery, recurrence=recurrence)
    app.bot_data["sync_engine"] = SyncEngine(db, HttpRemoteClient())
    app.bot_data["dispatcher"] = dispatcher

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("add", cmd_add))
    app.add_handler(CommandHandler("events", cmd_events))
    app.add_handler(CommandHandler("today", cmd_today))
    app.add_handler(CommandHandler("delete", cmd_delete))
    app.add_handler(CommandHandler("alerts", cmd_alerts))
    app.add_handler(CommandHandler("sync", cmd_sync))
    app.add_handler(CommandHandler("lastsync", cmd_lastsync))

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Reminder Sync bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
