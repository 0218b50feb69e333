"""Job-queue timer adapter — implements TimerPort via python-telegram-bot's JobQueue.

Each armed reminder is a one-shot job named after its timer key; the job's
data is the serialised FiringPayload. Jobs live in memory only, so the
event service's recovery sweep re-arms them after a restart.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from telegram.ext import ContextTypes, JobQueue

from src.data.models import FiringPayload
from src.ports.timer_port import FiringHandler

logger = logging.getLogger(__name__)


class JobQueueTimer:
    """JobQueue implementation of TimerPort."""

    def __init__(self, job_queue: JobQueue, handler: FiringHandler | None = None) -> None:
        self._job_queue = job_queue
        self._handler = handler

    def bind(self, handler: FiringHandler) -> None:
        """Set the coroutine that receives every firing."""
        self._handler = handler

    def arm(self, key: str, when: datetime, payload: FiringPayload) -> None:
        for job in self._job_queue.get_jobs_by_name(key):
            job.schedule_removal()

        # A missed instant fires late (right away), never early
        run_at: datetime | float = when
        if when <= datetime.now(timezone.utc):
            run_at = 0

        self._job_queue.run_once(
            self._on_job,
            when=run_at,
            data=payload.model_dump(mode="json"),
            name=key,
        )
        logger.info("Timer %s armed for %s", key, when.isoformat())

    def is_armed(self, key: str) -> bool:
        return any(not job.removed for job in self._job_queue.get_jobs_by_name(key))

    async def _on_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        job = context.job
        try:
            payload = FiringPayload.model_validate(job.data)
        except ValidationError as exc:
            logger.error("Dropping timer %s with invalid payload: %s", job.name, exc)
            return

        if self._handler is None:
            logger.error("Timer %s fired with no handler bound", job.name)
            return
        await self._handler(payload)
