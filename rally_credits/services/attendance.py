"""Attendance collaborator.

The check-in system is external. The ledger only needs a tri-state answer
per (user, event) and whether the event is over.
"""

import enum
import logging
from typing import Protocol

import httpx

from rally_credits.core.config import settings

logger = logging.getLogger(__name__)


class AttendanceStatus(enum.StrEnum):
    CHECKED_IN = "checked_in"
    NOT_CHECKED_IN = "not_checked_in"
    UNKNOWN = "unknown"


class AttendanceProvider(Protocol):
    async def is_checked_in(self, user_id: str, event_id: str) -> AttendanceStatus: ...

    async def has_event_concluded(self, event_id: str) -> bool: ...


class HttpAttendanceClient:
    """Reads check-in state from the attendance service over HTTP.

    GET /events/{event_id}/attendees/{user_id} -> {"checked_in": true | false | null}
    GET /events/{event_id} -> {"concluded": bool}

    A missing attendee record is UNKNOWN. Transport errors propagate so the
    caller can leave the grant for a later run.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.attendance_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.attendance_timeout_seconds
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def is_checked_in(self, user_id: str, event_id: str) -> AttendanceStatus:
        async with self._client() as client:
            resp = await client.get(f"/events/{event_id}/attendees/{user_id}")
        if resp.status_code == httpx.codes.NOT_FOUND:
            return AttendanceStatus.UNKNOWN
        resp.raise_for_status()

        checked_in = resp.json().get("checked_in")
        if checked_in is None:
            return AttendanceStatus.UNKNOWN
        return AttendanceStatus.CHECKED_IN if checked_in else AttendanceStatus.NOT_CHECKED_IN

    async def has_event_concluded(self, event_id: str) -> bool:
        async with self._client() as client:
            resp = await client.get(f"/events/{event_id}")
        if resp.status_code == httpx.codes.NOT_FOUND:
            logger.warning("Attendance service has no record of event %s", event_id)
            return False
        resp.raise_for_status()
        return bool(resp.json().get("concluded", False))
