"""
Reminder Sync — Data Models.

Events persist in SQLite across restarts and are the only state the sync
engine reconciles with the remote API. Each row carries its own sync
lifecycle (sync_status) and the state of its reminder timer (timer_state).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel


class RecurrenceType(str, Enum):
    """How an event repeats after it fires."""

    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"

    @classmethod
    def parse(cls, value: str | None) -> RecurrenceType:
        """Lenient lookup: empty or unknown values read back as NONE."""
        if not value:
            return cls.NONE
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.NONE


class SyncStatus(str, Enum):
    """Where a local row stands relative to the remote store."""

    PENDING = "PENDING"          # created locally, not uploaded yet
    SYNCED = "SYNCED"            # has a confirmed remote_id
    LOCAL_ONLY = "LOCAL_ONLY"    # predates sync support


class TimerState(str, Enum):
    """Reminder timer lifecycle of a single occurrence.

    ARMED -> FIRED -> (RESCHEDULED | TERMINATED)
    """

    ARMED = "ARMED"
    FIRED = "FIRED"
    RESCHEDULED = "RESCHEDULED"
    TERMINATED = "TERMINATED"


@dataclass
class Event:
    """One scheduled reminder occurrence."""

    id: int
    name: str
    date: str                              # ISO date YYYY-MM-DD
    time: str                              # HH:MM, 24-hour
    description: str = ""
    recurrence_type: RecurrenceType = RecurrenceType.NONE
    remote_id: str | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    last_modified: int = 0                 # ms since epoch
    timer_state: TimerState | None = None  # None: no timer was ever armed


@dataclass
class RemoteEvent:
    """An event record as returned by the remote API."""

    remote_id: str
    name: str
    date: str
    time: str
    description: str = ""
    recurrence_type: RecurrenceType = RecurrenceType.NONE


class FiringPayload(BaseModel):
    """Data carried by an armed timer and handed back when it fires.

    JSON example:
    {
        "event_id": 42,
        "name": "Standup",
        "time": "09:30",
        "recurrence_type": "DAILY"
    }

    ``time`` is a plain string so a malformed value reaches the recurrence
    engine's guard instead of failing validation here.
    """

    event_id: int | None = None
    name: str
    time: str
    recurrence_type: RecurrenceType = RecurrenceType.NONE


def timer_key(event_id: int) -> str:
    """Timer Service key for the occurrence stored under ``event_id``."""
    return f"event-{event_id}"
