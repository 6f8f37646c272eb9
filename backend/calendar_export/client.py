"""
Google Calendar v3 REST client.
Only the calls the export flow needs: list calendars, preview upcoming
events, insert an event with a fixed id, update it in place.
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx

from calendar_export.context import CalendarAuthContext
from server.config import CALENDAR_TIMEOUT_SECONDS, GOOGLE_CALENDAR_API_BASE

logger = logging.getLogger(__name__)

DEFAULT_EVENT_PREVIEW = 25


class CalendarAPIError(Exception):
    def __init__(self, status_code: int, message: str, reason: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429 or (
            self.status_code == 403 and self.reason in ("rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded")
        )


def _raise_for_status(response: httpx.Response):
    if response.is_success:
        return
    reason = ""
    message = response.text[:200]
    try:
        error = response.json().get("error", {})
        message = error.get("message", message)
        errors = error.get("errors") or []
        if errors:
            reason = errors[0].get("reason", "")
    except (ValueError, AttributeError):
        pass
    raise CalendarAPIError(response.status_code, f"HTTP {response.status_code}: {message}", reason)


class GoogleCalendarClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or GOOGLE_CALENDAR_API_BASE).rstrip("/")
        self.timeout = timeout or CALENDAR_TIMEOUT_SECONDS
        self.transport = transport

    def connect(self, context: CalendarAuthContext) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=context.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def list_calendars(self, context: CalendarAuthContext) -> list[dict]:
        async with self.connect(context) as client:
            response = await client.get("/users/me/calendarList")
        _raise_for_status(response)
        return response.json().get("items", [])

    async def list_events(
        self,
        context: CalendarAuthContext,
        calendar_id: Optional[str] = None,
        time_min: Optional[datetime] = None,
        max_results: int = DEFAULT_EVENT_PREVIEW,
    ) -> list[dict]:
        """Upcoming single events ordered by start time."""
        params = {
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": max_results,
        }
        if time_min is not None:
            params["timeMin"] = time_min.isoformat()
        cal = quote(calendar_id or context.calendar_id, safe="")
        async with self.connect(context) as client:
            response = await client.get(f"/calendars/{cal}/events", params=params)
        _raise_for_status(response)
        return response.json().get("items", [])

    async def upsert_event(self, client: httpx.AsyncClient, calendar_id: str, event_id: str, body: dict) -> str:
        """Insert with a client-chosen id; update in place when it already exists.

        Returns "created" or "updated".
        """
        cal = quote(calendar_id, safe="")
        response = await client.post(f"/calendars/{cal}/events", json={**body, "id": event_id})
        if response.status_code == 409:
            response = await client.put(f"/calendars/{cal}/events/{event_id}", json={**body, "id": event_id})
            _raise_for_status(response)
            return "updated"
        _raise_for_status(response)
        return "created"
