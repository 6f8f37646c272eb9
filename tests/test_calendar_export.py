import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from brain.errors import ConfigurationError, ExportPartialFailure
from brain.schemas import Session
from calendar_export.adapter import AUTH_EXPIRED, CalendarExportAdapter, session_event_id
from calendar_export.client import GoogleCalendarClient
from calendar_export.context import CalendarAuthContext
from calendar_export.schemas import ExportStatus

UTC = timezone.utc


class FakeCalendar:
    """In-memory Google Calendar events endpoint."""

    def __init__(self, fail=None):
        self.events = {}
        self.requests = []
        # event index (by insertion attempt) -> response status
        self.fail = fail or {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert request.headers["Authorization"] == "Bearer token-1"
        if request.method == "GET" and request.url.path.endswith("/calendarList"):
            return httpx.Response(200, json={"items": [{"id": "primary", "summary": "Me"}]})
        if request.method == "GET":
            return httpx.Response(200, json={"items": [{"id": "e1"}], "params": dict(request.url.params)})

        body = json.loads(request.content)
        attempt = len([r for r in self.requests if r.method == "POST"]) - 1
        if request.method == "POST" and attempt in self.fail:
            status = self.fail[attempt]
            reason = {"error": {"message": "nope", "errors": [{"reason": "rateLimitExceeded"}]}}
            return httpx.Response(status, json=reason)
        if request.method == "POST":
            if body["id"] in self.events:
                return httpx.Response(409, json={"error": {"message": "The requested identifier already exists."}})
            self.events[body["id"]] = body
            return httpx.Response(200, json=body)
        if request.method == "PUT":
            event_id = request.url.path.rsplit("/", 1)[-1]
            self.events[event_id] = body
            return httpx.Response(200, json=body)
        return httpx.Response(405)


def make_sessions(n=3):
    start = datetime(2024, 1, 1, 9, tzinfo=UTC)
    return [
        Session(
            summary=f"Study Session: Topic {i}",
            start=start + timedelta(days=i),
            end=start + timedelta(days=i, hours=1),
            subtask_id=f"s{i}",
            index=i,
        )
        for i in range(n)
    ]


def signed_in_context():
    context = CalendarAuthContext()
    context.sign_in("token-1", expires_in=3600)
    return context


def adapter_for(calendar: FakeCalendar) -> CalendarExportAdapter:
    client = GoogleCalendarClient(base_url="https://calendar.test/v3", transport=httpx.MockTransport(calendar.handler))
    return CalendarExportAdapter(client)


def test_context_lifecycle():
    context = CalendarAuthContext()
    assert not context.is_active()

    now = datetime(2024, 1, 1, tzinfo=UTC)
    context.sign_in("token-1", expires_in=60, now=now)
    assert context.is_active(now=now)
    assert not context.is_active(now=now + timedelta(minutes=2))

    context.select_calendar("work@example.com")
    assert context.calendar_id == "work@example.com"
    context.sign_out()
    assert not context.is_active() and context.calendar_id == "primary"


def test_event_ids_are_deterministic():
    session = make_sessions(1)[0]
    event_id = session_event_id("roadmap-1", session)
    assert event_id == session_event_id("roadmap-1", session)
    assert event_id != session_event_id("roadmap-2", session)
    assert set(event_id) <= set("0123456789abcdef")


@pytest.mark.asyncio
async def test_export_creates_events():
    calendar = FakeCalendar()
    result = await adapter_for(calendar).export_sessions(make_sessions(), signed_in_context(), "roadmap-1")

    assert result.ok
    assert [o.status for o in result.outcomes] == [ExportStatus.CREATED] * 3
    assert len(calendar.events) == 3
    first = calendar.events[result.outcomes[0].event_id]
    assert first["summary"] == "Study Session: Topic 0"
    assert first["start"] == {"dateTime": "2024-01-01T09:00:00+00:00"}


@pytest.mark.asyncio
async def test_re_export_updates_instead_of_duplicating():
    calendar = FakeCalendar()
    adapter = adapter_for(calendar)
    await adapter.export_sessions(make_sessions(), signed_in_context(), "roadmap-1")
    result = await adapter.export_sessions(make_sessions(), signed_in_context(), "roadmap-1")

    assert [o.status for o in result.outcomes] == [ExportStatus.UPDATED] * 3
    assert len(calendar.events) == 3


@pytest.mark.asyncio
async def test_partial_failure_reports_failed_indices():
    calendar = FakeCalendar(fail={1: 429})
    result = await adapter_for(calendar).export_sessions(make_sessions(), signed_in_context(), "roadmap-1")

    assert result.failed_indices == [1]
    assert "quota" in result.failed[0].error
    assert len(calendar.events) == 2
    with pytest.raises(ExportPartialFailure) as info:
        result.raise_for_failures()
    assert info.value.failures[0]["index"] == 1


@pytest.mark.asyncio
async def test_expired_token_fails_remaining_sessions():
    calendar = FakeCalendar(fail={1: 401})
    context = signed_in_context()
    result = await adapter_for(calendar).export_sessions(make_sessions(), context, "roadmap-1")

    assert [o.status for o in result.outcomes] == [ExportStatus.CREATED, ExportStatus.FAILED, ExportStatus.FAILED]
    assert {o.error for o in result.failed} == {AUTH_EXPIRED}
    assert not context.is_active()
    # the third session is never sent
    assert len([r for r in calendar.requests if r.method == "POST"]) == 2


@pytest.mark.asyncio
async def test_inactive_context_is_rejected_before_any_request():
    calendar = FakeCalendar()
    with pytest.raises(ConfigurationError):
        await adapter_for(calendar).export_sessions(make_sessions(), CalendarAuthContext(), "roadmap-1")
    assert calendar.requests == []


@pytest.mark.asyncio
async def test_list_calendars_and_events():
    calendar = FakeCalendar()
    client = GoogleCalendarClient(base_url="https://calendar.test/v3", transport=httpx.MockTransport(calendar.handler))
    context = signed_in_context()

    calendars = await client.list_calendars(context)
    assert calendars == [{"id": "primary", "summary": "Me"}]

    await client.list_events(context, time_min=datetime(2024, 1, 1, tzinfo=UTC))
    params = calendar.requests[-1].url.params
    assert calendar.requests[-1].url.path == "/v3/calendars/primary/events"
    assert params["maxResults"] == "25"
    assert params["singleEvents"] == "true"
    assert params["orderBy"] == "startTime"
    assert params["timeMin"].startswith("2024-01-01T00:00:00")
