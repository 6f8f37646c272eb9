"""Input checks and plan invariants shared by the scheduler and the API."""
from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from brain.errors import ConstraintViolation, ValidationError
from brain.packing import MAX_SESSION_MIN, MIN_SESSION_MIN, WEEK, WORK_DAY_END, WORK_DAY_START
from brain.schemas import PlanType, Session
from roadmaps.schemas import Roadmap

MIN_HOURS_PER_WEEK = 1
MAX_HOURS_PER_WEEK = 40
# float slack when comparing summed durations
EPSILON_HOURS = 1e-6


def clamp_hours_per_week(value, default: int = 10) -> int:
    """Coerce user input into the accepted 1-40 range (the form's bounds)."""
    try:
        hours = int(value)
    except (TypeError, ValueError):
        return default
    return max(MIN_HOURS_PER_WEEK, min(MAX_HOURS_PER_WEEK, hours))


def validate_schedule_inputs(roadmap: Roadmap, plan_type, hours_per_week, starting_date) -> PlanType:
    if roadmap is None or not roadmap.subtasks:
        raise ValidationError("Roadmap has no subtasks to schedule")
    if isinstance(hours_per_week, bool) or not isinstance(hours_per_week, int):
        raise ValidationError(f"hours_per_week must be an integer, got {hours_per_week!r}")
    if not MIN_HOURS_PER_WEEK <= hours_per_week <= MAX_HOURS_PER_WEEK:
        raise ValidationError(
            f"hours_per_week must be between {MIN_HOURS_PER_WEEK} and {MAX_HOURS_PER_WEEK}, got {hours_per_week}"
        )
    if isinstance(starting_date, datetime) or not isinstance(starting_date, date):
        raise ValidationError(f"starting_date must be a date, got {starting_date!r}")
    try:
        return PlanType(plan_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown plan type: {plan_type!r}") from exc


def weekly_totals(sessions: list[Session], starting_date: date, tz: tzinfo = timezone.utc) -> list[float]:
    """Scheduled hours per 7-day bucket; bucket 0 starts at midnight of `starting_date`."""
    plan_start = datetime.combine(starting_date, time(0, 0), tzinfo=tz)
    totals: list[float] = []
    for s in sessions:
        week = max(0, math.floor((s.start - plan_start) / WEEK))
        while len(totals) <= week:
            totals.append(0.0)
        totals[week] += s.duration_hours
    return [round(t, 2) for t in totals]


def find_weekly_overshoot(
    sessions: list[Session],
    starting_date: date,
    hours_per_week: float,
    tz: tzinfo = timezone.utc,
) -> list[tuple[int, float]]:
    """(week index, hours over budget) for every bucket that exceeds the cap."""
    return [
        (week, round(total - hours_per_week, 2))
        for week, total in enumerate(weekly_totals(sessions, starting_date, tz))
        if total > hours_per_week + EPSILON_HOURS
    ]


def max_rolling_load(sessions: list[Session]) -> float:
    """Largest number of hours inside any 7-day window.

    The maximum is always reached by a window ending at some session end,
    so only those windows are checked.
    """
    best = 0.0
    for anchor in sessions:
        window_end = anchor.end
        window_start = window_end - WEEK
        load = timedelta(0)
        for s in sessions:
            overlap = min(s.end, window_end) - max(s.start, window_start)
            if overlap > timedelta(0):
                load += overlap
        best = max(best, load.total_seconds() / 3600)
    return best


def verify_sessions(sessions: list[Session], roadmap: Roadmap, hours_per_week: int, tz: tzinfo) -> None:
    """Raise ConstraintViolation if the finished plan breaks an invariant."""
    for prev, cur in zip(sessions, sessions[1:]):
        if cur.start < prev.start:
            raise ConstraintViolation("Sessions are not sorted by start time")
        if cur.start < prev.end:
            raise ConstraintViolation(f"Sessions {prev.index} and {cur.index} overlap")

    for s in sessions:
        minutes = (s.end - s.start).total_seconds() / 60
        if not MIN_SESSION_MIN <= minutes <= MAX_SESSION_MIN:
            raise ConstraintViolation(f"Session {s.index} lasts {minutes:.0f} minutes")
        local_start, local_end = s.start.astimezone(tz), s.end.astimezone(tz)
        same_day = local_end.date() == local_start.date()
        if local_start.time() < WORK_DAY_START or not same_day or local_end.time() > WORK_DAY_END:
            raise ConstraintViolation(f"Session {s.index} falls outside working hours")

    load = max_rolling_load(sessions)
    if load > hours_per_week + EPSILON_HOURS:
        raise ConstraintViolation(
            f"{load:.2f}h scheduled inside one week, cap is {hours_per_week}h",
            overflow_hours=load - hours_per_week,
        )

    covered: dict[str, float] = {}
    for s in sessions:
        covered[s.subtask_id] = covered.get(s.subtask_id, 0.0) + s.duration_hours
    for st in roadmap.subtasks:
        if st.estimated_hours > 0 and covered.get(st.id, 0.0) + EPSILON_HOURS < st.estimated_hours:
            raise ConstraintViolation(
                f"Subtask {st.title!r} is covered for {covered.get(st.id, 0.0):.2f}h of {st.estimated_hours}h",
                overflow_hours=st.estimated_hours - covered.get(st.id, 0.0),
            )
