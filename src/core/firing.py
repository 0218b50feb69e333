"""Firing dispatcher — one timer firing, two independent consumers.

Reminder delivery runs as its own task (fire-and-forget); the recurrence
engine consumes the same payload in the firing context. A failure in either
one never reaches the other.
"""

from __future__ import annotations

import asyncio
import logging

from src.core.recurrence import RecurrenceEngine, RescheduleResult
from src.core.reminder_delivery import ReminderDelivery
from src.data.db import EventDB, StoreError
from src.data.models import FiringPayload, TimerState

logger = logging.getLogger(__name__)


class FiringDispatcher:
    """Entry point bound to the timer adapter."""

    def __init__(
        self,
        db: EventDB,
        delivery: ReminderDelivery,
        recurrence: RecurrenceEngine,
    ) -> None:
        self._db = db
        self._delivery = delivery
        self._recurrence = recurrence
        self._deliveries: set[asyncio.Task] = set()

    async def handle(self, payload: FiringPayload) -> RescheduleResult:
        logger.info("Timer fired for '%s' at %s", payload.name, payload.time)

        if payload.event_id is not None:
            try:
                self._db.set_timer_state(payload.event_id, TimerState.FIRED)
            except StoreError as exc:
                logger.warning("Could not mark event #%d fired: %s", payload.event_id, exc)

        task = asyncio.create_task(self._delivery.deliver(payload))
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)

        return self._recurrence.handle_firing(payload)

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._deliveries.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reminder delivery crashed: %s", task.exception())

    async def drain(self) -> None:
        """Wait for outstanding reminder deliveries (used on shutdown and in tests)."""
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)
