"""Recurrence engine — turns one fired occurrence into the next one.

Every firing of a repeating event inserts the successor row and arms its
timer, which keeps the chain alive across process restarts: the row is
written in the ARMED state before the timer is armed, so a crash in between
leaves a row the startup recovery sweep can re-arm.

Month steps keep the day-of-month and clamp to the last day of the target
month when that day does not exist (Jan 31 -> Feb 28, or Feb 29 in a leap
year).
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable
from zoneinfo import ZoneInfo

from src.data.db import EventDB, StoreError
from src.data.models import Event, FiringPayload, RecurrenceType, TimerState, timer_key
from src.ports.timer_port import TimerPort

logger = logging.getLogger(__name__)


class RescheduleOutcome(str, Enum):
    RESCHEDULED = "RESCHEDULED"   # successor inserted and armed
    TERMINATED = "TERMINATED"     # NONE recurrence, chain ends here
    ABORTED = "ABORTED"           # malformed payload, nothing written
    FAILED = "FAILED"             # storage or timer fault


@dataclass
class RescheduleResult:
    outcome: RescheduleOutcome
    event: Event | None = None


def parse_time_of_day(raw: str) -> tuple[int, int]:
    """Parse "HH:MM" (24-hour) into (hour, minute).

    Raises ValueError on malformed or out-of-range input.
    """
    parsed = datetime.strptime(raw.strip(), "%H:%M")
    return parsed.hour, parsed.minute


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def step(moment: datetime, recurrence_type: RecurrenceType) -> datetime | None:
    """Advance by one recurrence unit; None for NONE."""
    if recurrence_type is RecurrenceType.DAILY:
        return moment + timedelta(days=1)
    if recurrence_type is RecurrenceType.WEEKLY:
        return moment + timedelta(weeks=1)
    if recurrence_type is RecurrenceType.MONTHLY:
        return add_months(moment, 1)
    return None


def next_occurrence(
    now: datetime,
    time_text: str,
    recurrence_type: RecurrenceType,
) -> datetime | None:
    """The next instant after a firing at ``now``.

    Base is today's date (in ``now``'s zone) at the configured time of day,
    zero seconds; then one recurrence step. Returns None for NONE.
    Raises ValueError if ``time_text`` is not HH:MM.
    """
    hour, minute = parse_time_of_day(time_text)
    base = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return step(base, recurrence_type)


def local_now() -> datetime:
    from src.config import settings

    return datetime.now(ZoneInfo(settings.TIMEZONE))


class RecurrenceEngine:
    """Produces the successor of a fired occurrence and re-arms its timer."""

    def __init__(
        self,
        db: EventDB,
        timer: TimerPort,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        self._db = db
        self._timer = timer
        self._now = now

    def handle_firing(self, payload: FiringPayload) -> RescheduleResult:
        """Consume one firing. Never raises; the outcome says what happened."""
        if payload.recurrence_type is RecurrenceType.NONE:
            self._advance(payload.event_id, TimerState.TERMINATED)
            return RescheduleResult(RescheduleOutcome.TERMINATED)

        try:
            next_at = next_occurrence(self._now(), payload.time, payload.recurrence_type)
        except ValueError as exc:
            logger.warning(
                "Not rescheduling '%s': bad time %r (%s)", payload.name, payload.time, exc,
            )
            self._advance(payload.event_id, TimerState.TERMINATED)
            return RescheduleResult(RescheduleOutcome.ABORTED)

        next_date = next_at.date().isoformat()
        next_time = next_at.strftime("%H:%M")

        try:
            successor = self._db.insert_event(
                name=payload.name,
                date=next_date,
                time=next_time,
                description="",
                recurrence_type=payload.recurrence_type,
                timer_state=TimerState.ARMED,
            )
        except StoreError as exc:
            logger.error("Could not store next occurrence of '%s': %s", payload.name, exc)
            return RescheduleResult(RescheduleOutcome.FAILED)

        try:
            self._timer.arm(
                timer_key(successor.id),
                next_at,
                FiringPayload(
                    event_id=successor.id,
                    name=payload.name,
                    time=next_time,
                    recurrence_type=payload.recurrence_type,
                ),
            )
        except Exception as exc:
            # Row stays ARMED; the recovery sweep re-arms it on next start
            logger.error("Could not arm timer for event #%d: %s", successor.id, exc)
            return RescheduleResult(RescheduleOutcome.FAILED, successor)

        self._advance(payload.event_id, TimerState.RESCHEDULED)
        logger.info(
            "Rescheduled '%s' (%s): next occurrence #%d at %s %s",
            payload.name, payload.recurrence_type.value, successor.id, next_date, next_time,
        )
        return RescheduleResult(RescheduleOutcome.RESCHEDULED, successor)

    def _advance(self, event_id: int | None, state: TimerState) -> None:
        """Move the fired row along its timer lifecycle, if it still exists."""
        if event_id is None:
            return
        try:
            self._db.set_timer_state(event_id, state)
        except StoreError as exc:
            logger.warning("Could not mark event #%d %s: %s", event_id, state.value, exc)
