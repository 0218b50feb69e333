"""Timer port — abstract interface for one-shot reminder wake-ups.

Core modules depend on this protocol, never on a specific scheduler.
There is no ``cancel``: deleting an event does not retract a
timer that is already armed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Protocol

from src.data.models import FiringPayload

FiringHandler = Callable[[FiringPayload], Awaitable[None]]


class TimerPort(Protocol):
    """Abstract timer interface used by core modules."""

    def arm(self, key: str, when: datetime, payload: FiringPayload) -> None:
        """Deliver ``payload`` once at ``when``; replaces any timer under ``key``."""
        ...

    def is_armed(self, key: str) -> bool: ...
