"""HTTP remote adapter — implements RemotePort over a JSON REST API.

The remote schema is poorer than the local one: it stores a title and a
free-text body only. Uploads pack "<date> <time>" into the body; downloads
come back with a placeholder date/time and no recurrence.
"""

from __future__ import annotations

import logging
import time

import httpx

from src.data.models import Event, RecurrenceType, RemoteEvent
from src.ports.remote_port import RemoteError

logger = logging.getLogger(__name__)

PLACEHOLDER_DATE = "2025-01-01"
PLACEHOLDER_TIME = "12:00"


class HttpRemoteClient:
    """httpx implementation of RemotePort."""

    def __init__(
        self,
        base_url: str | None = None,
        user_id: int | None = None,
        timeout: float | None = None,
        download_limit: int | None = None,
    ) -> None:
        from src.config import settings

        self._base_url = (base_url or settings.REMOTE_API_BASE_URL).rstrip("/")
        self._user_id = settings.REMOTE_USER_ID if user_id is None else user_id
        self._timeout = settings.REMOTE_TIMEOUT_SECONDS if timeout is None else timeout
        self._download_limit = (
            settings.REMOTE_DOWNLOAD_LIMIT if download_limit is None else download_limit
        )

    async def upload(self, events: list[Event]) -> list[str | None]:
        """POST each event; a failed item maps to None.

        Raises RemoteError only when every item failed at the transport
        level, i.e. the remote could not be reached at all.
        """
        if not events:
            return []

        remote_ids: list[str | None] = []
        transport_failures = 0
        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout) as client:
            for event in events:
                try:
                    remote_ids.append(await self._upload_one(client, event))
                except httpx.TransportError as exc:
                    transport_failures += 1
                    logger.warning("Upload of event #%d failed: %s", event.id, exc)
                    remote_ids.append(None)
                except (httpx.HTTPStatusError, ValueError) as exc:
                    logger.warning("Upload of event #%d rejected: %s", event.id, exc)
                    remote_ids.append(None)

        if transport_failures == len(events):
            raise RemoteError(f"Remote unreachable at {self._base_url}")
        return remote_ids

    async def _upload_one(self, client: httpx.AsyncClient, event: Event) -> str:
        resp = await client.post(
            "/posts",
            json={
                "title": event.name,
                "body": f"{event.date} {event.time}",
                "userId": self._user_id,
            },
        )
        resp.raise_for_status()
        if resp.status_code not in (200, 201):
            raise ValueError(f"Unexpected status {resp.status_code}")

        data = resp.json()
        remote_id = data.get("id") if isinstance(data, dict) else None
        if remote_id is None or str(remote_id) == "":
            # Some test backends don't echo an id back
            remote_id = f"remote_{int(time.time() * 1000)}_{event.id}"
        logger.debug("Uploaded event #%d -> remote_id=%s", event.id, remote_id)
        return str(remote_id)

    async def download(self) -> list[RemoteEvent]:
        """GET the remote event list, mapped into RemoteEvent records."""
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout,
            ) as client:
                resp = await client.get("/posts", params={"userId": self._user_id})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RemoteError(f"Download failed: {exc}") from exc

        if not isinstance(data, list):
            raise RemoteError(f"Download returned {type(data).__name__}, expected a list")

        remote_events: list[RemoteEvent] = []
        for item in data[: self._download_limit]:
            remote_event = _parse_remote_event(item)
            if remote_event is not None:
                remote_events.append(remote_event)

        logger.info("Downloaded %d events from remote", len(remote_events))
        return remote_events


def _parse_remote_event(item: object) -> RemoteEvent | None:
    """Map one {id, title, body} record; records without an id are skipped."""
    if not isinstance(item, dict) or item.get("id") in (None, ""):
        logger.warning("Skipping remote record without id: %r", item)
        return None
    return RemoteEvent(
        remote_id=str(item["id"]),
        name=item.get("title") or "Remote Event",
        date=PLACEHOLDER_DATE,
        time=PLACEHOLDER_TIME,
        description=item.get("body") or "",
        recurrence_type=RecurrenceType.NONE,
    )
