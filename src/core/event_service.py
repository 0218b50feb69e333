"""Event service — user-initiated event actions and the startup recovery sweep.

This module is provider-agnostic: it depends on the TimerPort protocol and
on ReminderDelivery, not on Telegram.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from src.core.recurrence import (
    RecurrenceEngine,
    RescheduleOutcome,
    local_now,
    parse_time_of_day,
)
from src.core.reminder_delivery import ReminderDelivery
from src.data.db import EventDB
from src.data.models import Event, FiringPayload, RecurrenceType, TimerState, timer_key
from src.ports.timer_port import TimerPort

logger = logging.getLogger(__name__)


class InvalidEventError(Exception):
    """Raised when user input does not describe a valid event."""


def parse_event_instant(date_text: str, time_text: str, tz: ZoneInfo) -> datetime:
    """Combine an ISO date and an HH:MM time into an aware datetime.

    Raises ValueError on malformed input.
    """
    day = datetime.strptime(date_text.strip(), "%Y-%m-%d")
    hour, minute = parse_time_of_day(time_text)
    return day.replace(hour=hour, minute=minute, tzinfo=tz)


class EventService:
    """Create, list and delete events; re-arm timers after a restart."""

    def __init__(
        self,
        db: EventDB,
        timer: TimerPort,
        delivery: ReminderDelivery,
        now: Callable[[], datetime] = local_now,
        recurrence: RecurrenceEngine | None = None,
    ) -> None:
        self._db = db
        self._timer = timer
        self._delivery = delivery
        self._now = now
        self._recurrence = recurrence

    @property
    def _tz(self) -> ZoneInfo:
        from src.config import settings

        return ZoneInfo(settings.TIMEZONE)

    def add_event(
        self,
        name: str,
        date: str,
        time: str,
        description: str = "",
        recurrence_type: RecurrenceType = RecurrenceType.NONE,
    ) -> Event:
        """Store a new PENDING event and arm its reminder."""
        if not name.strip():
            raise InvalidEventError("Event name is required")
        try:
            when = parse_event_instant(date, time, self._tz)
        except ValueError as exc:
            raise InvalidEventError("Use YYYY-MM-DD and HH:MM (24-hour)") from exc

        event = self._db.insert_event(
            name=name.strip(),
            date=when.date().isoformat(),
            time=when.strftime("%H:%M"),
            description=description,
            recurrence_type=recurrence_type,
            timer_state=TimerState.ARMED,
        )
        self._arm(event, when)
        return event

    def list_events(self) -> list[Event]:
        return self._db.list_all()

    def todays_events(self) -> list[Event]:
        return self._db.get_events_for_date(self._now().date().isoformat())

    def delete_event(self, event_id: int) -> bool:
        """Delete a row. An already-armed timer for it still fires."""
        return self._db.delete_event(event_id)

    async def send_todays_alerts(self) -> int:
        """Deliver a reminder for each of today's events, without rescheduling."""
        events = self.todays_events()
        for event in events:
            await self._delivery.deliver(_payload_for(event))
        logger.info("Sent %d alerts for today", len(events))
        return len(events)

    def recover_timers(self) -> int:
        """Re-arm every ARMED row whose timer is not live (e.g. after a restart).

        Missed instants fire late rather than being dropped. Rows whose
        stored date/time cannot be parsed are moved to TERMINATED.

        Rows left FIRED (the process died between the firing and the
        successor insert) are finished: a repeating one is handed to the
        recurrence engine again, a NONE one is TERMINATED. Returns the number
        of timers armed.
        """
        rearmed = 0
        for event in self._db.get_events_by_timer_state(TimerState.ARMED):
            if self._timer.is_armed(timer_key(event.id)):
                continue
            try:
                when = parse_event_instant(event.date, event.time, self._tz)
            except ValueError:
                logger.warning(
                    "Event #%d has unparseable %s %s; not re-arming",
                    event.id, event.date, event.time,
                )
                self._db.set_timer_state(event.id, TimerState.TERMINATED)
                continue
            self._arm(event, when)
            rearmed += 1

        rearmed += self._resume_fired()

        if rearmed:
            logger.info("Recovery sweep re-armed %d timer(s)", rearmed)
        return rearmed

    def _resume_fired(self) -> int:
        resumed = 0
        for event in self._db.get_events_by_timer_state(TimerState.FIRED):
            if event.recurrence_type is RecurrenceType.NONE:
                self._db.set_timer_state(event.id, TimerState.TERMINATED)
                continue
            if self._recurrence is None:
                logger.warning(
                    "Event #%d was left FIRED; no recurrence engine to resume it", event.id,
                )
                continue
            result = self._recurrence.handle_firing(_payload_for(event))
            if result.outcome is RescheduleOutcome.RESCHEDULED:
                logger.info("Resumed interrupted chain of event #%d", event.id)
                resumed += 1
        return resumed

    def _arm(self, event: Event, when: datetime) -> None:
        self._timer.arm(timer_key(event.id), when, _payload_for(event))


def _payload_for(event: Event) -> FiringPayload:
    return FiringPayload(
        event_id=event.id,
        name=event.name,
        time=event.time,
        recurrence_type=event.recurrence_type,
    )
