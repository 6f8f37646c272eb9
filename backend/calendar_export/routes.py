"""Calendar routes: list calendars, preview events, export a study plan."""

import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from brain.errors import PlannerError
from calendar_export.adapter import CalendarExportAdapter
from calendar_export.client import DEFAULT_EVENT_PREVIEW, CalendarAPIError, GoogleCalendarClient
from calendar_export.context import CalendarAuthContext
from calendar_export.schemas import ExportRequest, ExportResponse
from roadmaps import store
from server.errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


def get_calendar_client() -> GoogleCalendarClient:
    return GoogleCalendarClient()


def get_calendar_context(
    x_calendar_token: Optional[str] = Header(None),
    x_calendar_token_expires_in: Optional[int] = Header(None),
) -> CalendarAuthContext:
    """One context per request, built from the token the host app obtained."""
    if not x_calendar_token:
        raise HTTPException(status_code=401, detail="X-Calendar-Token header is required")
    context = CalendarAuthContext()
    context.sign_in(x_calendar_token, expires_in=x_calendar_token_expires_in)
    return context


def _calendar_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, CalendarAPIError):
        if exc.status_code == 401:
            return HTTPException(status_code=401, detail="Calendar authorization expired")
        if exc.is_rate_limit:
            return HTTPException(status_code=429, detail=str(exc))
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=504 if isinstance(exc, httpx.TimeoutException) else 502, detail=str(exc))


@router.get("/calendars")
async def list_calendars(
    context: CalendarAuthContext = Depends(get_calendar_context),
    client: GoogleCalendarClient = Depends(get_calendar_client),
):
    try:
        calendars = await client.list_calendars(context)
    except (CalendarAPIError, httpx.HTTPError) as exc:
        raise _calendar_http_error(exc) from exc
    return {"calendars": calendars}


@router.get("/calendars/{calendar_id}/events")
async def list_events(
    calendar_id: str,
    max_results: int = DEFAULT_EVENT_PREVIEW,
    context: CalendarAuthContext = Depends(get_calendar_context),
    client: GoogleCalendarClient = Depends(get_calendar_client),
):
    context.select_calendar(calendar_id)
    try:
        events = await client.list_events(
            context, time_min=datetime.now(timezone.utc), max_results=max_results
        )
    except (CalendarAPIError, httpx.HTTPError) as exc:
        raise _calendar_http_error(exc) from exc
    return {"calendar_id": calendar_id, "events": events}


@router.post("/roadmaps/{roadmap_id}/study-plan/export", response_model=ExportResponse)
async def export_study_plan(
    roadmap_id: str,
    body: Optional[ExportRequest] = None,
    context: CalendarAuthContext = Depends(get_calendar_context),
    client: GoogleCalendarClient = Depends(get_calendar_client),
):
    """Push the stored plan to the calendar. 207 when some sessions failed."""
    body = body or ExportRequest()
    if body.calendar_id:
        context.select_calendar(body.calendar_id)

    try:
        plan = store.get_study_plan(roadmap_id)
        sessions = plan.sessions
        if body.indices is not None:
            wanted = set(body.indices)
            sessions = [s for s in sessions if s.index in wanted]
        result = await CalendarExportAdapter(client).export_sessions(sessions, context, roadmap_id)
    except PlannerError as exc:
        raise to_http_exception(exc) from exc

    response = ExportResponse(
        roadmap_id=result.roadmap_id,
        calendar_id=result.calendar_id,
        outcomes=result.outcomes,
        failed_indices=result.failed_indices,
    )
    if not result.ok:
        logger.warning("Export of roadmap %s left %d failed sessions", roadmap_id, len(result.failed))
        return JSONResponse(status_code=207, content=response.model_dump(mode="json"))
    return response
