"""
Calendar export adapter.
Pushes study sessions to Google Calendar with deterministic event ids, so
exporting the same plan twice updates the existing events instead of
creating duplicates.
"""

import hashlib
import logging
from typing import Optional

import httpx

from brain.errors import ConfigurationError
from brain.schemas import Session
from calendar_export.client import CalendarAPIError, GoogleCalendarClient
from calendar_export.context import CalendarAuthContext
from calendar_export.schemas import ExportResult, ExportStatus, SessionExportOutcome

logger = logging.getLogger(__name__)

AUTH_EXPIRED = "authorization expired"


def session_event_id(roadmap_id: str, session: Session) -> str:
    # hex digits are inside Google's base32hex event-id alphabet
    key = f"{roadmap_id}:{session.subtask_id or ''}:{session.index}"
    return hashlib.sha1(key.encode()).hexdigest()


class CalendarExportAdapter:
    def __init__(self, client: Optional[GoogleCalendarClient] = None):
        self.client = client or GoogleCalendarClient()

    async def export_sessions(
        self,
        sessions: list[Session],
        context: CalendarAuthContext,
        roadmap_id: str,
    ) -> ExportResult:
        """Create or update one event per session.

        Failures are reported per session; nothing is raised for them. Call
        `raise_for_failures()` on the result to turn them into an exception.
        """
        if not context.is_active():
            raise ConfigurationError(
                "Calendar authorization is missing or expired",
                hint="Sign in to Google Calendar again and retry the export.",
            )

        result = ExportResult(roadmap_id=roadmap_id, calendar_id=context.calendar_id)
        async with self.client.connect(context) as http:
            for session in sessions:
                event_id = session_event_id(roadmap_id, session)
                if not context.is_active():
                    result.outcomes.append(self._failed(session, event_id, AUTH_EXPIRED))
                    continue
                try:
                    status = await self.client.upsert_event(
                        http, context.calendar_id, event_id, session.to_calendar_event()
                    )
                except CalendarAPIError as exc:
                    if exc.status_code == 401:
                        logger.warning("Calendar rejected the token; stopping export of roadmap %s", roadmap_id)
                        context.invalidate()
                        result.outcomes.append(self._failed(session, event_id, AUTH_EXPIRED))
                    elif exc.is_rate_limit:
                        result.outcomes.append(self._failed(session, event_id, f"quota exceeded: {exc}"))
                    else:
                        result.outcomes.append(self._failed(session, event_id, str(exc)))
                    continue
                except httpx.TimeoutException:
                    result.outcomes.append(self._failed(session, event_id, "request timed out"))
                    continue
                except httpx.HTTPError as exc:
                    result.outcomes.append(self._failed(session, event_id, f"network error: {exc}"))
                    continue
                result.outcomes.append(SessionExportOutcome(
                    index=session.index, event_id=event_id, status=ExportStatus(status),
                ))

        logger.info(
            "Exported roadmap %s to calendar %s: %d ok, %d failed",
            roadmap_id, context.calendar_id,
            len(result.outcomes) - len(result.failed), len(result.failed),
        )
        return result

    @staticmethod
    def _failed(session: Session, event_id: str, error: str) -> SessionExportOutcome:
        return SessionExportOutcome(
            index=session.index, event_id=event_id, status=ExportStatus.FAILED, error=error,
        )
