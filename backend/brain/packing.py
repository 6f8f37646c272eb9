"""
Deterministic slot packing for study sessions.
Places fixed-length chunks into working-hour windows day by day, never
moving backwards in time, so sessions cannot overlap and every chunk of a
subtask lands after all chunks placed before it.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from brain.errors import ConstraintViolation
from brain.schemas import PlanType

logger = logging.getLogger(__name__)

WORK_DAY_START = time(9, 0)
WORK_DAY_END = time(20, 0)
MIN_SESSION_MIN = 60
MAX_SESSION_MIN = 180
SESSION_BUFFER_MIN = 15
START_GRID_MIN = 15
CHUNK_GRID_MIN = 30
REST_WEEKDAYS = frozenset({6})  # Sunday
WEEK = timedelta(days=7)


@dataclass(frozen=True)
class PlanProfile:
    daily_cap_min: int
    max_session_min: int
    horizon_weeks: int

    def max_chunk_min(self, hours_per_week: int) -> int:
        return min(self.max_session_min, self.daily_cap_min, hours_per_week * 60)


PROFILES = {
    PlanType.WEEKLY: PlanProfile(daily_cap_min=240, max_session_min=MAX_SESSION_MIN, horizon_weeks=1),
    PlanType.MONTHLY: PlanProfile(daily_cap_min=120, max_session_min=120, horizon_weeks=4),
}


def split_minutes(total_min: float, max_chunk_min: int) -> list[int]:
    """Cut a duration into near-equal chunks on a 30-minute grid.

    The sum is never below `total_min`; each chunk is between
    min(MIN_SESSION_MIN, max_chunk_min) and max_chunk_min.
    """
    if total_min <= 0:
        return []
    min_chunk = min(MIN_SESSION_MIN, max_chunk_min)
    units = max(1, math.ceil(total_min / CHUNK_GRID_MIN))
    n = math.ceil(units * CHUNK_GRID_MIN / max_chunk_min)
    per, extra = divmod(units, n)
    chunks = [(per + (1 if i < extra else 0)) * CHUNK_GRID_MIN for i in range(n)]
    return [max(min_chunk, min(c, max_chunk_min)) for c in chunks]


def _round_up(dt: datetime, minutes: int) -> datetime:
    if dt.second or dt.microsecond:
        dt = dt.replace(second=0, microsecond=0) + timedelta(minutes=1)
    remainder = dt.minute % minutes
    if remainder:
        dt += timedelta(minutes=minutes - remainder)
    return dt


class StudyWindow:
    """Working-hours window of one local calendar day."""

    def __init__(self, day: date, tz: tzinfo):
        self.day = day
        self.start_local = datetime.combine(day, WORK_DAY_START, tzinfo=tz)
        self.end_local = datetime.combine(day, WORK_DAY_END, tzinfo=tz)

    def __repr__(self):
        return f"StudyWindow({self.day.isoformat()} {self.start_local.strftime('%H:%M')}-{self.end_local.strftime('%H:%M')})"


class SlotPacker:
    def __init__(
        self,
        profile: PlanProfile,
        hours_per_week: int,
        starting_date: date,
        tz: tzinfo,
        max_horizon_weeks: int,
    ):
        self.profile = profile
        self.tz = tz
        self.weekly_cap_min = hours_per_week * 60
        self.nominal_end_day = starting_date + timedelta(weeks=profile.horizon_weeks)
        self.last_day = starting_date + timedelta(weeks=max_horizon_weeks)
        self.cursor = datetime.combine(starting_date, WORK_DAY_START, tzinfo=tz)
        self.placed: list[tuple[datetime, datetime]] = []  # UTC, chronological
        self.day_load_min: dict[date, float] = {}
        self.deferred_min = 0.0

    def _next_day(self, day: date) -> datetime:
        return StudyWindow(day + timedelta(days=1), self.tz).start_local

    def _release_time(self, duration: timedelta) -> Optional[datetime]:
        """Earliest UTC start at which a session of `duration` keeps every
        rolling 7-day window within the weekly cap. None when unconstrained."""
        budget = timedelta(minutes=self.weekly_cap_min) - duration
        acc = timedelta(0)
        for start, end in reversed(self.placed):
            length = end - start
            if acc + length > budget:
                # window must open after this point
                open_at = end - (budget - acc)
                return open_at + WEEK - duration
            acc += length
        return None

    def place(self, minutes: float, not_before: Optional[datetime] = None) -> tuple[datetime, datetime]:
        """Reserve the earliest slot of `minutes` at or after the cursor and `not_before`."""
        duration = timedelta(minutes=minutes)
        candidate = self.cursor
        if not_before is not None and not_before.astimezone(self.tz) > candidate:
            candidate = not_before.astimezone(self.tz)

        while True:
            window = StudyWindow(candidate.date(), self.tz)
            if window.day >= self.last_day:
                raise ConstraintViolation(
                    f"No slot for a {minutes / 60:.1f}h session before {self.last_day.isoformat()}",
                    overflow_hours=minutes / 60,
                )
            used = self.day_load_min.get(window.day, 0.0)
            if window.day.weekday() in REST_WEEKDAYS or used + minutes > self.profile.daily_cap_min:
                candidate = self._next_day(window.day)
                continue
            if candidate < window.start_local:
                candidate = window.start_local
            candidate = _round_up(candidate, START_GRID_MIN)
            end = (candidate.astimezone(timezone.utc) + duration).astimezone(self.tz)
            if end > window.end_local:
                candidate = self._next_day(window.day)
                continue

            release = self._release_time(duration)
            if release is not None and candidate.astimezone(timezone.utc) < release:
                # weekly cap reached: defer until enough earlier study time rolls out of the window
                candidate = release.astimezone(self.tz)
                continue
            break

        start_utc = candidate.astimezone(timezone.utc)
        self.placed.append((start_utc, start_utc + duration))
        self.day_load_min[window.day] = used + minutes
        if window.day >= self.nominal_end_day:
            self.deferred_min += minutes
        logger.debug("Placed %.0f min session at %s", minutes, candidate.isoformat())
        self.cursor = end + timedelta(minutes=SESSION_BUFFER_MIN)
        return candidate, end
