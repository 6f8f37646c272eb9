"""Plan proposers — sources of draft study sessions.

The scheduler does not trust any draft: every proposal goes through the same
validation and packing pass. Proposers only decide *what* to study *when*
as a first suggestion.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Optional

from brain.errors import ParseError
from brain.oracle import OracleClient
from brain.packing import PlanProfile, WORK_DAY_END, WORK_DAY_START, split_minutes
from brain.parsing import extract_json_array, extract_json_object, parse_datetime, strip_code_fences
from brain.schemas import PlanSource, PlanType
from roadmaps.schemas import Roadmap, Subtask

logger = logging.getLogger(__name__)


@dataclass
class DraftSession:
    subtask_id: str
    minutes: float
    start: Optional[datetime] = None
    summary: str = ""
    description: str = ""


@dataclass
class ProposalRequest:
    roadmap: Roadmap
    plan_type: PlanType
    hours_per_week: int
    starting_date: date
    tz: tzinfo
    profile: PlanProfile


def default_summary(subtask: Subtask) -> str:
    return f"Study Session: {subtask.title}"


def local_drafts(subtask: Subtask, minutes: float, max_chunk_min: int) -> list[DraftSession]:
    """Chunks with no preferred start, covering `minutes` of the subtask."""
    return [
        DraftSession(
            subtask_id=subtask.id,
            minutes=chunk,
            summary=default_summary(subtask),
            description=subtask.description,
        )
        for chunk in split_minutes(minutes, max_chunk_min)
    ]


class PlanProposer(ABC):
    source: PlanSource

    @abstractmethod
    async def propose(self, request: ProposalRequest) -> list[DraftSession]:
        ...


class LocalPlanProposer(PlanProposer):
    """Greedy fallback: every subtask cut into chunks, placed earliest-first."""

    source = PlanSource.LOCAL

    async def propose(self, request: ProposalRequest) -> list[DraftSession]:
        max_chunk = request.profile.max_chunk_min(request.hours_per_week)
        drafts: list[DraftSession] = []
        for st in request.roadmap.subtasks:
            drafts.extend(local_drafts(st, st.estimated_hours * 60, max_chunk))
        return drafts


class OraclePlanProposer(PlanProposer):
    """Asks the oracle for a calendar draft in Google Calendar event shape."""

    source = PlanSource.ORACLE

    def __init__(self, oracle: Optional[OracleClient] = None):
        self.oracle = oracle or OracleClient()

    @property
    def available(self) -> bool:
        return self.oracle.available

    def _build_system_prompt(self, request: ProposalRequest) -> str:
        max_session_h = request.profile.max_chunk_min(request.hours_per_week) / 60
        return f"""You are an expert academic scheduler. Your job is to take a learning roadmap and convert it into a practical, day-by-day study plan that fits into the user's schedule.

Guidelines:
1. Act as a scheduler - distribute the roadmap modules across days and time slots
2. Each study session should be 1-{max_session_h:g} hours long
3. Respect the user's weekly hour constraints ({request.hours_per_week} hours per week) - never exceed it in any 7-day period
4. Space sessions realistically (allow rest days, avoid cramming, at most {request.profile.daily_cap_min / 60:g} hours per day)
5. Start scheduling from {request.starting_date.strftime('%B %d, %Y')}
6. Use realistic times ({WORK_DAY_START.strftime('%H:%M')} - {WORK_DAY_END.strftime('%H:%M')} range, avoid late nights)
7. Each session description should include specific topics from the module
8. Return ONLY valid JSON - no explanatory text, no markdown formatting

CRITICAL: Return ONLY a valid JSON object. No additional commentary."""

    def _build_user_prompt(self, request: ProposalRequest) -> str:
        roadmap = request.roadmap
        subtask_lines = "\n".join(
            f"{i + 1}. [id: {st.id}] {st.title} ({st.estimated_hours:g}h) - {st.description}"
            for i, st in enumerate(roadmap.subtasks)
        )
        example_start = datetime.combine(request.starting_date, WORK_DAY_START, tzinfo=request.tz)
        example_end = example_start.replace(hour=WORK_DAY_START.hour + 2)
        event_example = json.dumps({
            "subtask_id": "<id of the subtask>",
            "summary": "Study Session: [Module Title]",
            "description": "[Specific topics and details from the module]",
            "start": {"dateTime": example_start.isoformat()},
            "end": {"dateTime": example_end.isoformat()},
        }, indent=2)

        return f"""Schedule the following roadmap into a {request.plan_type.value} study plan.

**Constraints:**
- Study Hours Per Week: {request.hours_per_week} hours
- Start Date: {request.starting_date.isoformat()}
- Plan Type: {request.plan_type.value}
- Time zone offset of all times: {example_start.strftime('%z')}

**Roadmap Data:**
Title: {roadmap.title}
Subject: {roadmap.subject}
Description: {roadmap.description or 'No description'}

Subtasks to schedule:
{subtask_lines}

**Output Requirements:**
Return a JSON object with an "events" array. Each event MUST follow this exact schema:
{event_example}

Distribute all modules into manageable sessions across the schedule."""

    async def propose(self, request: ProposalRequest) -> list[DraftSession]:
        raw_response = await self.oracle.complete(
            self._build_user_prompt(request),
            system=self._build_system_prompt(request),
        )
        text = strip_code_fences(raw_response)
        first_array, first_object = text.find("["), text.find("{")
        if first_array != -1 and (first_object == -1 or first_array < first_object):
            # some replies skip the wrapper object and return the bare events array
            events = extract_json_array(text)
        else:
            events = extract_json_object(text).get("events")

        if not isinstance(events, list):
            raise ParseError("Oracle reply has no events array", raw_response=raw_response)

        drafts = [d for d in (self._to_draft(e, request) for e in events) if d is not None]
        logger.info("Oracle drafted %d events, %d usable", len(events), len(drafts))
        if not drafts:
            raise ParseError("Oracle reply contained no usable events", raw_response=raw_response)
        return drafts

    def _to_draft(self, event, request: ProposalRequest) -> Optional[DraftSession]:
        if not isinstance(event, dict):
            return None
        subtask = self._match_subtask(event, request.roadmap)
        start = parse_datetime(event.get("start"), request.tz)
        end = parse_datetime(event.get("end"), request.tz)
        if subtask is None or start is None or end is None or end <= start:
            logger.warning("Dropping unusable oracle event: %s", str(event)[:200])
            return None
        return DraftSession(
            subtask_id=subtask.id,
            minutes=(end - start).total_seconds() / 60,
            start=start,
            summary=str(event.get("summary") or default_summary(subtask)),
            description=str(event.get("description") or subtask.description),
        )

    def _match_subtask(self, event: dict, roadmap: Roadmap) -> Optional[Subtask]:
        """By echoed id first, then by the longest subtask title found in the summary."""
        sid = event.get("subtask_id")
        if sid:
            match = roadmap.get_subtask(str(sid))
            if match:
                return match
        summary = str(event.get("summary") or "").casefold()
        candidates = [st for st in roadmap.subtasks if st.title.casefold() in summary]
        if not candidates:
            return None
        return max(candidates, key=lambda st: len(st.title))


def select_proposer(oracle: Optional[OracleClient] = None) -> PlanProposer:
    """Oracle-backed when credentials are configured, local otherwise."""
    proposer = OraclePlanProposer(oracle)
    if proposer.available:
        return proposer
    logger.info("Oracle not configured — using local greedy proposer")
    return LocalPlanProposer()
