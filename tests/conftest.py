"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB and in-memory fakes for the
timer and remote ports.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("ALLOWED_USER_IDS", "12345")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")
os.environ.setdefault("SMS_ENABLED", "false")

import pytest
from datetime import datetime
from zoneinfo import ZoneInfo


UTC = ZoneInfo("UTC")


class FakeTimer:
    """In-memory TimerPort: records every arm, keyed like the real adapter."""

    def __init__(self):
        self.armed = {}     # key -> (when, payload)
        self.calls = []     # (key, when, payload) in arm order

    def arm(self, key, when, payload):
        self.armed[key] = (when, payload)
        self.calls.append((key, when, payload))

    def is_armed(self, key):
        return key in self.armed


class FakeRemote:
    """In-memory RemotePort with scripted upload/download behaviour."""

    def __init__(self, remote_events=None, fail_upload_at=(), upload_error=None,
                 download_error=None):
        self.remote_events = list(remote_events or [])
        self.fail_upload_at = set(fail_upload_at)   # 0-based positions
        self.upload_error = upload_error
        self.download_error = download_error
        self.uploaded_batches = []
        self.download_calls = 0
        self._next_id = 100

    async def upload(self, events):
        if self.upload_error is not None:
            raise self.upload_error
        self.uploaded_batches.append([e.id for e in events])
        ids = []
        for i, _ in enumerate(events):
            if i in self.fail_upload_at:
                ids.append(None)
            else:
                self._next_id += 1
                ids.append(f"srv-{self._next_id}")
        return ids

    async def download(self):
        self.download_calls += 1
        if self.download_error is not None:
            raise self.download_error
        return list(self.remote_events)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_events.db")


@pytest.fixture
def event_db(tmp_db_path):
    """Return an EventDB instance backed by a temp file."""
    from src.data.db import EventDB
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def fake_timer():
    return FakeTimer()


@pytest.fixture
def fixed_now():
    """A firing moment: 2026-03-10 08:00 UTC."""
    return datetime(2026, 3, 10, 8, 0, 30, tzinfo=UTC)


@pytest.fixture
def make_remote():
    """Factory for FakeRemote instances."""
    return FakeRemote
