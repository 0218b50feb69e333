"""
Reminder Sync — Sync Engine.

Reconciles the local EventDB with the remote API in one pass:

1. Upload: every PENDING / LOCAL_ONLY row goes up in one batch; each
   accepted row becomes SYNCED with its remote_id.
2. Download: every remote record whose remote_id is not stored yet is
   inserted as SYNCED. Records already present are skipped, so repeating a
   download never duplicates rows.
3. If either phase succeeded, last_sync_timestamp is refreshed.

Conflict policy is fixed: a remote row wins only if its remote_id is
unseen; an existing local row is never touched by the download.

Passes are serialised on one asyncio.Lock, so a second request waits for
the first to finish (FIFO) instead of interleaving. Store calls run in a
worker thread; every store and remote call is bounded by a timeout (the
batch upload gets one remote timeout per item), and a timeout counts as a
phase failure. A remote id that clashes with a stored one fails that item
only. perform_sync never raises.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from src.data.db import ConstraintError, EventDB, StoreError
from src.ports.remote_port import RemoteError, RemotePort

logger = logging.getLogger(__name__)

MSG_SUCCESS = "Sync completed successfully"
MSG_PARTIAL = "Sync completed with some errors"
MSG_FAILURE = "Sync failed"


class SyncStatusCode(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILURE = "FAILURE"


@dataclass
class SyncResult:
    """The single outcome reported for one sync pass."""

    status: SyncStatusCode
    message: str
    uploaded: int = 0
    downloaded: int = 0

    @property
    def success(self) -> bool:
        return self.status is SyncStatusCode.SUCCESS


@dataclass
class _PhaseResult:
    ok: bool
    count: int = 0


SyncCallback = Callable[[SyncResult], "Awaitable[None] | None"]


class SyncEngine:
    """Upload-then-download reconciliation between EventDB and a RemotePort."""

    def __init__(
        self,
        db: EventDB,
        remote: RemotePort,
        store_timeout: float | None = None,
        remote_timeout: float | None = None,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        if store_timeout is None or remote_timeout is None:
            from src.config import settings

            if store_timeout is None:
                store_timeout = settings.STORE_TIMEOUT_SECONDS
            if remote_timeout is None:
                remote_timeout = settings.REMOTE_TIMEOUT_SECONDS

        self._db = db
        self._remote = remote
        self._store_timeout = store_timeout
        self._remote_timeout = remote_timeout
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def perform_sync(self) -> SyncResult:
        """Run one full pass, waiting for any pass already in flight."""
        async with self._lock:
            try:
                return await self._run_pass()
            except Exception as exc:
                logger.exception("Sync failed with exception")
                return SyncResult(SyncStatusCode.FAILURE, f"{MSG_FAILURE}: {exc}")

    def request_sync(self, callback: SyncCallback | None = None) -> asyncio.Task:
        """Queue a pass in the background and report its result via ``callback``.

        The callback runs exactly once, on the caller's event loop.
        """
        if self._closed:
            raise RuntimeError("SyncEngine is shut down")

        task = asyncio.create_task(self._run_and_report(callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Stop accepting requests and let queued and in-flight passes finish."""
        self._closed = True
        if self._tasks:
            logger.info("Waiting for %d sync pass(es) to finish", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def last_sync_timestamp(self) -> int:
        return await self._store(self._db.get_last_sync_timestamp)

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run_and_report(self, callback: SyncCallback | None) -> SyncResult:
        result = await self.perform_sync()
        if callback is not None:
            try:
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Sync callback raised")
        return result

    async def _run_pass(self) -> SyncResult:
        logger.info("Starting sync pass")

        upload = await self._upload_phase()
        logger.info("Upload phase: %s", "SUCCESS" if upload.ok else "FAILED")

        download = await self._download_phase()
        logger.info("Download phase: %s", "SUCCESS" if download.ok else "FAILED")

        if upload.ok or download.ok:
            try:
                stamp = await self._store(
                    self._db.update_last_sync_timestamp, self._clock_ms(),
                )
                logger.debug("last_sync_timestamp = %d", stamp)
            except (StoreError, asyncio.TimeoutError) as exc:
                logger.error("Could not record sync timestamp: %s", exc)

        if upload.ok and download.ok:
            status, message = SyncStatusCode.SUCCESS, MSG_SUCCESS
        elif upload.ok or download.ok:
            status, message = SyncStatusCode.PARTIAL, MSG_PARTIAL
        else:
            status, message = SyncStatusCode.FAILURE, MSG_FAILURE

        logger.info(
            "Sync pass finished: %s (%d uploaded, %d downloaded)",
            status.value, upload.count, download.count,
        )
        return SyncResult(status, message, uploaded=upload.count, downloaded=download.count)

    async def _upload_phase(self) -> _PhaseResult:
        try:
            pending = await self._store(self._db.get_unsynced_events)
        except (StoreError, asyncio.TimeoutError) as exc:
            logger.error("Upload phase: could not read unsynced events: %s", exc)
            return _PhaseResult(ok=False)

        if not pending:
            logger.debug("No unsynced events to upload")
            return _PhaseResult(ok=True)

        # The remote is called once per item, so the deadline scales with the batch
        deadline = self._remote_timeout * len(pending)
        logger.info("Uploading %d unsynced events", len(pending))
        try:
            remote_ids = await asyncio.wait_for(
                self._remote.upload(pending), timeout=deadline,
            )
        except asyncio.TimeoutError:
            logger.error("Upload phase timed out after %.1fs", deadline)
            return _PhaseResult(ok=False)
        except RemoteError as exc:
            logger.error("Upload phase failed: %s", exc)
            return _PhaseResult(ok=False)

        if len(remote_ids) != len(pending):
            logger.error(
                "Upload returned %d ids for %d events; discarding", len(remote_ids), len(pending),
            )
            return _PhaseResult(ok=False)

        uploaded = rejected = 0
        for event, remote_id in zip(pending, remote_ids):
            if not remote_id:
                logger.warning("Event #%d was not accepted by the remote", event.id)
                rejected += 1
                continue
            try:
                marked = await self._store(self._db.mark_synced, event.id, remote_id)
            except ConstraintError as exc:
                logger.warning(
                    "Event #%d: remote_id %s already stored, leaving it pending: %s",
                    event.id, remote_id, exc,
                )
                rejected += 1
                continue
            except (StoreError, asyncio.TimeoutError) as exc:
                logger.error("Upload phase: could not mark event #%d synced: %s", event.id, exc)
                return _PhaseResult(ok=False, count=uploaded)
            if marked:
                uploaded += 1

        logger.info(
            "Uploaded %d/%d events (%d rejected)", uploaded, len(pending), rejected,
        )
        return _PhaseResult(ok=uploaded > 0, count=uploaded)

    async def _download_phase(self) -> _PhaseResult:
        try:
            remote_events = await asyncio.wait_for(
                self._remote.download(), timeout=self._remote_timeout,
            )
        except asyncio.TimeoutError:
            logger.error("Download phase timed out after %.1fs", self._remote_timeout)
            return _PhaseResult(ok=False)
        except RemoteError as exc:
            logger.error("Download phase failed: %s", exc)
            return _PhaseResult(ok=False)

        inserted = skipped = failed = 0
        for remote_event in remote_events:
            try:
                if await self._store(self._db.exists_by_remote_id, remote_event.remote_id):
                    logger.debug("Event already exists: %s", remote_event.remote_id)
                    skipped += 1
                    continue
                await self._store(self._db.insert_event_from_remote, remote_event)
                inserted += 1
            except (StoreError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Could not import remote event %s: %s", remote_event.remote_id, exc,
                )
                failed += 1

        logger.info(
            "Download merge: %d inserted, %d already present, %d failed",
            inserted, skipped, failed,
        )
        return _PhaseResult(ok=True, count=inserted)

    async def _store(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking EventDB call in a worker thread, bounded by the store timeout."""
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args), timeout=self._store_timeout,
        )
