"""
Reminder Sync — Event Database.

The Memory pillar: events and sync metadata persist in SQLite across
restarts. This is the only module that mutates persisted state; every
public method runs in its own connection and transaction, so each call is
atomic at single-row granularity.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from src.data.models import (
    Event,
    RecurrenceType,
    RemoteEvent,
    SyncStatus,
    TimerState,
)

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_timestamp"

# Columns update_event() is allowed to touch
_UPDATABLE = {
    "name", "date", "time", "description",
    "recurrence_type", "remote_id", "sync_status",
}


class StoreError(Exception):
    """Raised when a storage operation fails at the SQLite layer."""


class ConstraintError(StoreError):
    """A write clashed with a uniqueness or integrity constraint on one row."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _db_value(value: object) -> object:
    """Enum members are stored by value."""
    if isinstance(value, (RecurrenceType, SyncStatus, TimerState)):
        return value.value
    return value


class EventDB:
    """SQLite-backed storage for events and sync metadata."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """One connection, one transaction; sqlite3 errors become StoreError."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise ConstraintError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the tables if they don't exist, and migrate schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id              INTEGER PRIMARY KEY AUTOINCREMENT,
                    name            TEXT    NOT NULL,
                    date            TEXT    NOT NULL,
                    time            TEXT    NOT NULL,
                    description     TEXT    NOT NULL DEFAULT '',
                    recurrence_type TEXT    NOT NULL DEFAULT 'NONE',
                    remote_id       TEXT,
                    sync_status     TEXT    NOT NULL DEFAULT 'PENDING',
                    last_modified   INTEGER NOT NULL DEFAULT 0,
                    timer_state     TEXT
                )
            """)
            # Migrate pre-sync DBs: rows that already exist become LOCAL_ONLY
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(events)").fetchall()
            }
            if "description" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN description TEXT NOT NULL DEFAULT ''"
                )
            if "recurrence_type" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN recurrence_type TEXT NOT NULL DEFAULT 'NONE'"
                )
            if "remote_id" not in existing_cols:
                conn.execute("ALTER TABLE events ADD COLUMN remote_id TEXT")
            if "sync_status" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN sync_status TEXT NOT NULL DEFAULT 'LOCAL_ONLY'"
                )
            if "last_modified" not in existing_cols:
                conn.execute(
                    "ALTER TABLE events ADD COLUMN last_modified INTEGER NOT NULL DEFAULT 0"
                )
            if "timer_state" not in existing_cols:
                conn.execute("ALTER TABLE events ADD COLUMN timer_state TEXT")

            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_date ON events (date)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events (time)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_recurrence ON events (recurrence_type)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_sync_status ON events (sync_status)"
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_remote_id "
                "ON events (remote_id) WHERE remote_id IS NOT NULL"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_metadata (
                    meta_key   TEXT PRIMARY KEY,
                    meta_value TEXT
                )
            """)
        logger.debug("Events tables initialized at %s", self._db_path)

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> Event:
        timer_state = None
        if row["timer_state"]:
            try:
                timer_state = TimerState(row["timer_state"])
            except ValueError:
                logger.warning(
                    "Event #%d has unknown timer_state %r", row["id"], row["timer_state"],
                )
        try:
            sync_status = SyncStatus(row["sync_status"])
        except ValueError:
            sync_status = SyncStatus.LOCAL_ONLY
        return Event(
            id=row["id"],
            name=row["name"],
            date=row["date"],
            time=row["time"],
            description=row["description"] or "",
            recurrence_type=RecurrenceType.parse(row["recurrence_type"]),
            remote_id=row["remote_id"],
            sync_status=sync_status,
            last_modified=row["last_modified"] or 0,
            timer_state=timer_state,
        )

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    def insert_event(
        self,
        name: str,
        date: str,
        time: str,
        description: str = "",
        recurrence_type: RecurrenceType = RecurrenceType.NONE,
        timer_state: TimerState | None = None,
    ) -> Event:
        """Insert a locally created event. It starts out PENDING upload."""
        now = _now_ms()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (name, date, time, description, recurrence_type,
                     remote_id, sync_status, last_modified, timer_state)
                VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?)
                """,
                (
                    name, date, time, description, recurrence_type.value,
                    SyncStatus.PENDING.value, now, _db_value(timer_state),
                ),
            )
            event_id = cursor.lastrowid

        event = Event(
            id=event_id,
            name=name,
            date=date,
            time=time,
            description=description,
            recurrence_type=recurrence_type,
            sync_status=SyncStatus.PENDING,
            last_modified=now,
            timer_state=timer_state,
        )
        logger.info(
            "Event added: #%d '%s' on %s at %s (%s)",
            event_id, name, date, time, recurrence_type.value,
        )
        return event

    def insert_event_from_remote(self, remote: RemoteEvent) -> Event:
        """Insert an event imported from the remote API, already SYNCED."""
        now = _now_ms()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO events
                    (name, date, time, description, recurrence_type,
                     remote_id, sync_status, last_modified, timer_state)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL)
                """,
                (
                    remote.name, remote.date, remote.time, remote.description,
                    remote.recurrence_type.value, remote.remote_id,
                    SyncStatus.SYNCED.value, now,
                ),
            )
            event_id = cursor.lastrowid

        logger.info(
            "Remote event imported: #%d '%s' (remote_id=%s)",
            event_id, remote.name, remote.remote_id,
        )
        return Event(
            id=event_id,
            name=remote.name,
            date=remote.date,
            time=remote.time,
            description=remote.description,
            recurrence_type=remote.recurrence_type,
            remote_id=remote.remote_id,
            sync_status=SyncStatus.SYNCED,
            last_modified=now,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_event(self, event_id: int) -> Event | None:
        """Fetch a single event by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE id = ?", (event_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    def list_all(self) -> list[Event]:
        """All events, ordered by date then time."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM events ORDER BY date, time, id"
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_events_for_date(self, target_date: str) -> list[Event]:
        """Events on a single ISO date, ordered by time."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE date = ? ORDER BY time, id",
                (target_date,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_unsynced_events(self) -> list[Event]:
        """Events the remote hasn't accepted yet (PENDING or LOCAL_ONLY)."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE sync_status IN (?, ?) ORDER BY id",
                (SyncStatus.PENDING.value, SyncStatus.LOCAL_ONLY.value),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def exists_by_remote_id(self, remote_id: str) -> bool:
        """Check if a row with this remote_id is already stored."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM events WHERE remote_id = ?", (remote_id,)
            ).fetchone()
        return row is not None

    def get_events_by_timer_state(self, state: TimerState) -> list[Event]:
        """Events whose reminder timer is in the given state."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM events WHERE timer_state = ? ORDER BY date, time, id",
                (state.value,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    # ------------------------------------------------------------------
    # Updates / deletes
    # ------------------------------------------------------------------

    def update_event(self, event_id: int, **fields: object) -> bool:
        """Apply a partial update and refresh last_modified.

        last_modified never moves backwards, even if the clock does.
        Returns False if no row has this ID.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update column(s): {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_event(event_id) is not None

        assignments = ", ".join(f"{col} = ?" for col in fields)
        params = [_db_value(v) for v in fields.values()]
        params.extend([_now_ms(), event_id])
        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE events SET {assignments}, "
                "last_modified = MAX(last_modified, ?) WHERE id = ?",
                params,
            )
            updated = cursor.rowcount > 0
        return updated

    def mark_synced(self, event_id: int, remote_id: str) -> bool:
        """Record that the remote accepted this event under remote_id.

        Returns False if the row is gone (deleted while it was uploading).
        """
        updated = self.update_event(
            event_id, remote_id=remote_id, sync_status=SyncStatus.SYNCED,
        )
        if updated:
            logger.info("Event #%d synced as remote_id=%s", event_id, remote_id)
        else:
            logger.warning("Event #%d vanished before it could be marked synced", event_id)
        return updated

    def set_timer_state(self, event_id: int, state: TimerState) -> None:
        """Advance the reminder timer state (not a user-visible mutation)."""
        with self._transaction() as conn:
            conn.execute(
                "UPDATE events SET timer_state = ? WHERE id = ?",
                (state.value, event_id),
            )
        logger.debug("Event #%d timer state -> %s", event_id, state.value)

    def delete_event(self, event_id: int) -> bool:
        """Permanently delete an event. Its ID is never handed out again."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Event #%d deleted", event_id)
        return deleted

    # ------------------------------------------------------------------
    # Sync metadata
    # ------------------------------------------------------------------

    def get_metadata(self, key: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT meta_value FROM sync_metadata WHERE meta_key = ?", (key,)
            ).fetchone()
        return None if row is None else row["meta_value"]

    def set_metadata(self, key: str, value: str) -> None:
        """Upsert: an existing key has its value replaced."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_metadata (meta_key, meta_value) VALUES (?, ?)
                ON CONFLICT(meta_key) DO UPDATE SET meta_value = excluded.meta_value
                """,
                (key, value),
            )

    def get_last_sync_timestamp(self) -> int:
        """Milliseconds since epoch of the last sync, or 0 if never synced."""
        value = self.get_metadata(LAST_SYNC_KEY)
        if not value:
            return 0
        try:
            return int(value)
        except ValueError:
            logger.warning("Ignoring malformed %s value %r", LAST_SYNC_KEY, value)
            return 0

    def update_last_sync_timestamp(self, timestamp_ms: int | None = None) -> int:
        if timestamp_ms is None:
            timestamp_ms = _now_ms()
        self.set_metadata(LAST_SYNC_KEY, str(timestamp_ms))
        return timestamp_ms
