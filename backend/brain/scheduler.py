"""
Study-plan scheduler with a deterministic validation pass.
Decouples the creative draft (oracle or local proposer) from time
allocation: whatever the draft says, sessions are repaired, ordered by
prerequisites and packed by SlotPacker so the plan invariants hold.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from brain.errors import ConstraintViolation, GenerationError, ParseError
from brain.ordering import DependencyOrder, dependency_order
from brain.packing import MIN_SESSION_MIN, PROFILES, SlotPacker
from brain.proposers import (
    DraftSession,
    LocalPlanProposer,
    PlanProposer,
    ProposalRequest,
    local_drafts,
    select_proposer,
)
from brain.schemas import PlanSource, PlanType, Session, StudyPlan
from brain.validation import validate_schedule_inputs, verify_sessions, weekly_totals
from roadmaps.schemas import Roadmap
from server.config import MAX_HORIZON_WEEKS, PLANNER_TIMEZONE

logger = logging.getLogger(__name__)


class StudyPlanScheduler:
    def __init__(
        self,
        proposer: Optional[PlanProposer] = None,
        allow_fallback: bool = True,
        tz: Optional[tzinfo] = None,
        max_horizon_weeks: Optional[int] = None,
    ):
        self.proposer = proposer or select_proposer()
        self.fallback = LocalPlanProposer() if allow_fallback else None
        self.tz = tz or ZoneInfo(PLANNER_TIMEZONE)
        self.max_horizon_weeks = max_horizon_weeks or MAX_HORIZON_WEEKS

    async def schedule(
        self,
        roadmap: Roadmap,
        plan_type: PlanType | str,
        hours_per_week: int,
        starting_date: date,
    ) -> list[Session]:
        """Sorted, non-overlapping sessions covering every estimated subtask."""
        plan = await self.build_plan(roadmap, plan_type, hours_per_week, starting_date)
        return plan.sessions

    async def build_plan(
        self,
        roadmap: Roadmap,
        plan_type: PlanType | str,
        hours_per_week: int,
        starting_date: date,
    ) -> StudyPlan:
        """Generate a complete StudyPlan for the roadmap.

        Raises:
            ValidationError: bad inputs (raised before any oracle call).
            GenerationError / ParseError: oracle draft failed and fallback is disabled.
            QuotaExceededError / ConfigurationError: oracle refused the request.
            ConstraintViolation: the work does not fit inside the maximum horizon.
        """
        plan_type = validate_schedule_inputs(roadmap, plan_type, hours_per_week, starting_date)
        request = ProposalRequest(
            roadmap=roadmap,
            plan_type=plan_type,
            hours_per_week=hours_per_week,
            starting_date=starting_date,
            tz=self.tz,
            profile=PROFILES[plan_type],
        )

        source, drafts = await self._draft(request)
        sessions, deferred_min = self._pack(request, drafts)
        verify_sessions(sessions, roadmap, hours_per_week, self.tz)

        totals = weekly_totals(sessions, starting_date, self.tz)
        logger.info(
            "Scheduled %d sessions for roadmap %s (%s draft, %.1fh deferred, weekly totals %s)",
            len(sessions), roadmap.id, source.value, deferred_min / 60, totals,
        )
        return StudyPlan(
            roadmap_id=roadmap.id,
            plan_type=plan_type,
            hours_per_week=hours_per_week,
            starting_date=starting_date,
            sessions=sessions,
            source=source,
            deferred_hours=round(deferred_min / 60, 2),
            weekly_hours=totals,
        )

    async def _draft(self, request: ProposalRequest) -> tuple[PlanSource, list[DraftSession]]:
        try:
            return self.proposer.source, await self.proposer.propose(request)
        except (GenerationError, ParseError) as exc:
            if self.fallback is None or isinstance(self.proposer, LocalPlanProposer):
                raise GenerationError(f"Study plan generation failed: {exc}") from exc
            logger.warning("Oracle draft failed (%s) — falling back to local greedy packing", exc)
            return self.fallback.source, await self.fallback.propose(request)

    def _repair(self, drafts: list[DraftSession], request: ProposalRequest) -> list[DraftSession]:
        """Clamp durations and top up subtasks the draft under-covers."""
        max_chunk = request.profile.max_chunk_min(request.hours_per_week)
        floor = min(MIN_SESSION_MIN, max_chunk)
        horizon_end = datetime.combine(
            request.starting_date + timedelta(weeks=request.profile.horizon_weeks), time(0, 0), tzinfo=request.tz
        )
        estimated = {st.id: st for st in request.roadmap.subtasks if st.estimated_hours > 0}

        repaired: list[DraftSession] = []
        covered: dict[str, float] = {}
        for d in drafts:
            if d.subtask_id not in estimated:
                continue
            minutes = min(max(d.minutes, floor), max_chunk)
            if minutes != d.minutes:
                logger.debug("Repaired draft duration %.0f -> %.0f min", d.minutes, minutes)
            start = d.start
            if start is not None and start >= horizon_end:
                logger.debug("Dropped draft start %s past the plan horizon", start.isoformat())
                start = None
            repaired.append(DraftSession(d.subtask_id, minutes, start, d.summary, d.description))
            covered[d.subtask_id] = covered.get(d.subtask_id, 0.0) + minutes

        for sid, st in estimated.items():
            shortfall = math.ceil(st.estimated_hours * 60) - covered.get(sid, 0.0)
            if shortfall > 0:
                repaired.extend(local_drafts(st, shortfall, max_chunk))
        return repaired

    def _pack(self, request: ProposalRequest, drafts: list[DraftSession]) -> tuple[list[Session], float]:
        drafts = self._repair(drafts, request)

        priority: dict[str, float] = {}
        for d in drafts:
            if d.start is not None:
                ts = d.start.timestamp()
                priority[d.subtask_id] = min(ts, priority.get(d.subtask_id, ts))
        order = dependency_order(request.roadmap.subtasks, priority)
        queue = self._placement_queue(order, drafts)

        packer = SlotPacker(request.profile, request.hours_per_week, request.starting_date, self.tz,
                            self.max_horizon_weeks)
        placed: list[tuple[DraftSession, datetime, datetime]] = []
        for pos, d in enumerate(queue):
            try:
                start, end = packer.place(d.minutes, not_before=d.start)
            except ConstraintViolation as exc:
                overflow = sum(x.minutes for x in queue[pos:]) / 60
                raise ConstraintViolation(
                    f"{overflow:.1f}h of study does not fit within {self.max_horizon_weeks} weeks "
                    f"at {request.hours_per_week}h/week — extend the horizon or reduce scope",
                    overflow_hours=round(overflow, 2),
                ) from exc
            placed.append((d, start, end))

        return self._finalise(placed), packer.deferred_min

    def _placement_queue(self, order: DependencyOrder, drafts: list[DraftSession]) -> list[DraftSession]:
        """Drafts in placement order.

        The earliest drafted start goes first, but a subtask's drafts only
        become eligible once every draft of its prerequisites is queued.
        Edges pointing backwards in `order` (cycle fallback) are ignored.
        """
        rank = {st.id: i for i, st in enumerate(order.order)}
        blockers = {
            sid: {p for p in prereqs if rank[p] < rank[sid]}
            for sid, prereqs in order.prerequisites.items()
        }
        remaining: dict[str, int] = {}
        for d in drafts:
            remaining[d.subtask_id] = remaining.get(d.subtask_id, 0) + 1

        def key(item):
            i, d = item
            return (d.start.timestamp() if d.start else math.inf, rank[d.subtask_id], i)

        pending = list(enumerate(drafts))
        queue: list[DraftSession] = []
        while pending:
            ready = [
                item for item in pending
                if all(remaining.get(p, 0) == 0 for p in blockers[item[1].subtask_id])
            ]
            chosen = min(ready, key=key)
            pending.remove(chosen)
            queue.append(chosen[1])
            remaining[chosen[1].subtask_id] -= 1
        return queue

    def _finalise(self, placed) -> list[Session]:
        totals: dict[str, int] = {}
        for d, _, _ in placed:
            totals[d.subtask_id] = totals.get(d.subtask_id, 0) + 1

        parts: dict[str, int] = {}
        sessions = []
        for d, start, end in placed:
            parts[d.subtask_id] = parts.get(d.subtask_id, 0) + 1
            sessions.append(Session(
                summary=d.summary,
                description=d.description,
                start=start,
                end=end,
                subtask_id=d.subtask_id,
                part_number=parts[d.subtask_id],
                total_parts=totals[d.subtask_id],
            ))

        sessions.sort(key=lambda s: s.start)
        for i, s in enumerate(sessions):
            s.index = i
        return sessions
