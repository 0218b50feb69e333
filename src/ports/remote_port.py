"""Remote port — abstract interface for the remote event API.

Core modules depend on this protocol, never on a specific transport.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import Event, RemoteEvent


class RemoteError(Exception):
    """Raised when a remote call fails as a whole (network, status, timeout).

    Never signalled as an empty result, so callers can tell "nothing to
    sync" apart from "could not reach the remote".
    """


class RemotePort(Protocol):
    """Abstract remote client used by the sync engine."""

    async def upload(self, events: list[Event]) -> list[str | None]:
        """Upload a batch; one remote id (or None on failure) per input, in order."""
        ...

    async def download(self) -> list[RemoteEvent]: ...
