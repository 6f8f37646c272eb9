"""Explicit authorization state for calendar export."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_CALENDAR_ID = "primary"
# Google access tokens live for an hour
DEFAULT_TOKEN_TTL = timedelta(hours=1)


@dataclass
class CalendarAuthContext:
    """Who we export as and where to.

    The token comes from the host application's own OAuth flow; this object
    only carries it, tracks expiry, and is invalidated when the calendar
    service rejects it.
    """

    access_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    calendar_id: str = DEFAULT_CALENDAR_ID

    def sign_in(self, access_token: str, expires_in: Optional[int] = None, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        self.access_token = access_token
        self.expires_at = now + (timedelta(seconds=expires_in) if expires_in else DEFAULT_TOKEN_TTL)

    def sign_out(self):
        self.access_token = None
        self.expires_at = None
        self.calendar_id = DEFAULT_CALENDAR_ID

    def select_calendar(self, calendar_id: str):
        self.calendar_id = calendar_id or DEFAULT_CALENDAR_ID

    def invalidate(self):
        self.access_token = None
        self.expires_at = None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if not self.access_token:
            return False
        if self.expires_at is None:
            return True
        return (now or datetime.now(timezone.utc)) < self.expires_at

    @property
    def headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}
