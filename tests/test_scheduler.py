from datetime import date, datetime, timedelta, timezone

import pytest

from brain.decomposer import GoalDecomposer
from brain.errors import ConstraintViolation, GenerationError, QuotaExceededError, ValidationError
from brain.packing import PROFILES, SlotPacker, split_minutes
from brain.proposers import LocalPlanProposer, OraclePlanProposer
from brain.scheduler import StudyPlanScheduler
from brain.schemas import PlanSource, PlanType
from brain.validation import find_weekly_overshoot, max_rolling_load, weekly_totals
from roadmaps.schemas import Roadmap, Subtask

UTC = timezone.utc
# 2024-01-01 is a Monday
MONDAY = date(2024, 1, 1)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


def local_scheduler(**kwargs):
    return StudyPlanScheduler(proposer=LocalPlanProposer(), tz=UTC, **kwargs)


def oracle_scheduler(oracle, **kwargs):
    return StudyPlanScheduler(proposer=OraclePlanProposer(oracle), tz=UTC, **kwargs)


def event(subtask_id, start, end, summary="Study Session"):
    return {
        "subtask_id": subtask_id,
        "summary": summary,
        "description": "",
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }


def assert_plan_invariants(sessions, roadmap, hours_per_week):
    for prev, cur in zip(sessions, sessions[1:]):
        assert prev.end <= cur.start
    for s in sessions:
        assert timedelta(hours=1) <= s.end - s.start <= timedelta(hours=3)
        assert s.start.hour >= 9
        assert (s.end.hour, s.end.minute) <= (20, 0)
        assert s.start.weekday() != 6
    assert [s.index for s in sessions] == list(range(len(sessions)))
    assert max_rolling_load(sessions) <= hours_per_week + 1e-6
    for st in roadmap.subtasks:
        covered = sum(s.duration_hours for s in sessions if s.subtask_id == st.id)
        assert covered >= st.estimated_hours
        if st.estimated_hours > 0:
            assert covered > 0


# ─── Packing primitives ───────────────────────────────────

def test_split_minutes_uses_near_equal_chunks():
    assert split_minutes(120, 180) == [120]
    assert split_minutes(300, 180) == [150, 150]
    assert split_minutes(45, 180) == [60]
    assert split_minutes(0, 180) == []
    assert sum(split_minutes(470, 120)) >= 470


def test_slot_packer_adds_buffer_and_respects_daily_cap():
    packer = SlotPacker(PROFILES[PlanType.WEEKLY], 20, MONDAY, UTC, 52)
    assert packer.place(120) == (at(1, 9), at(1, 11))
    assert packer.place(60) == (at(1, 11, 15), at(1, 12, 15))
    # 4h daily cap reached: next session moves to Tuesday
    assert packer.place(90) == (at(2, 9), at(2, 10, 30))


def test_slot_packer_skips_sunday():
    packer = SlotPacker(PROFILES[PlanType.WEEKLY], 20, date(2024, 1, 7), UTC, 52)
    assert packer.place(60) == (at(8, 9), at(8, 10))


# ─── Local scheduling ─────────────────────────────────────

@pytest.mark.asyncio
async def test_local_plan_is_packed_in_dependency_order():
    roadmap = Roadmap(title="Algorithms", subject="CS", subtasks=[
        Subtask(id="a", title="Sorting", estimated_hours=2),
        Subtask(id="b", title="Graphs", estimated_hours=3, prerequisites=["a"]),
        Subtask(id="c", title="Dynamic programming", estimated_hours=1.5),
    ])
    sessions = await local_scheduler().schedule(roadmap, "weekly", 10, MONDAY)

    assert [(s.subtask_id, s.start, s.end) for s in sessions] == [
        ("a", at(1, 9), at(1, 11)),
        ("b", at(2, 9), at(2, 12)),
        ("c", at(3, 9), at(3, 10, 30)),
    ]
    assert sessions[0].summary == "Study Session: Sorting"
    assert_plan_invariants(sessions, roadmap, 10)


@pytest.mark.asyncio
async def test_one_hour_per_week_spreads_work_over_ten_weeks():
    roadmap = Roadmap(title="Spanish", subject="Languages", subtasks=[
        Subtask(title=f"Unit {i}", estimated_hours=1) for i in range(10)
    ])
    plan = await local_scheduler().build_plan(roadmap, PlanType.WEEKLY, 1, MONDAY)

    sessions = plan.sessions
    assert len(sessions) == 10
    assert sessions[-1].start - sessions[0].start >= timedelta(weeks=9)
    assert max_rolling_load(sessions) <= 1.0 + 1e-6
    assert plan.deferred_hours == 9.0
    assert plan.weekly_hours == [1.0] * 10
    assert plan.source == PlanSource.LOCAL
    assert_plan_invariants(sessions, roadmap, 1)


@pytest.mark.asyncio
async def test_zero_hour_subtasks_get_no_sessions():
    roadmap = Roadmap(title="Math", subject="Math", subtasks=[
        Subtask(id="a", title="Algebra", estimated_hours=2),
        Subtask(id="b", title="Reading list", estimated_hours=0),
    ])
    sessions = await local_scheduler().schedule(roadmap, "monthly", 5, MONDAY)
    assert {s.subtask_id for s in sessions} == {"a"}


@pytest.mark.asyncio
async def test_long_subtasks_are_split_into_parts():
    roadmap = Roadmap(title="Math", subject="Math", subtasks=[
        Subtask(id="a", title="Calculus", estimated_hours=5),
    ])
    sessions = await local_scheduler().schedule(roadmap, "monthly", 10, MONDAY)
    assert [s.part_number for s in sessions] == [1, 2, 3]
    assert {s.total_parts for s in sessions} == {3}
    # monthly profile: at most 2h per session and per day
    assert all(s.duration_hours <= 2 for s in sessions)
    assert len({s.start.date() for s in sessions}) == 3


@pytest.mark.asyncio
async def test_prerequisite_cycles_still_schedule_everything():
    roadmap = Roadmap(title="Loop", subject="CS", subtasks=[
        Subtask(id="a", title="A", estimated_hours=1, prerequisites=["b"]),
        Subtask(id="b", title="B", estimated_hours=1, prerequisites=["a"]),
        Subtask(id="c", title="C", estimated_hours=1, prerequisites=["missing"]),
    ])
    sessions = await local_scheduler().schedule(roadmap, "weekly", 10, MONDAY)
    assert sorted(s.subtask_id for s in sessions) == ["a", "b", "c"]
    assert_plan_invariants(sessions, roadmap, 10)


@pytest.mark.asyncio
async def test_react_roadmap_respects_prerequisites(react_roadmap):
    plan = await local_scheduler().build_plan(react_roadmap, "weekly", 10, MONDAY)
    sessions = plan.sessions
    assert_plan_invariants(sessions, react_roadmap, 10)

    ends = {}
    starts = {}
    for s in sessions:
        ends[s.subtask_id] = max(ends.get(s.subtask_id, s.end), s.end)
        starts[s.subtask_id] = min(starts.get(s.subtask_id, s.start), s.start)
    for st in react_roadmap.subtasks:
        for ref in st.prerequisites:
            prereq = "jsx" if ref == "JSX and components" else ref
            assert ends[prereq] <= starts[st.id]
    assert find_weekly_overshoot(sessions, MONDAY, 10) == []
    assert sum(weekly_totals(sessions, MONDAY)) == pytest.approx(sum(s.duration_hours for s in sessions))


@pytest.mark.asyncio
async def test_work_beyond_the_maximum_horizon_is_a_constraint_violation():
    roadmap = Roadmap(title="Spanish", subject="Languages", subtasks=[
        Subtask(title="Unit 1", estimated_hours=1),
        Subtask(title="Unit 2", estimated_hours=1),
    ])
    with pytest.raises(ConstraintViolation) as info:
        await local_scheduler(max_horizon_weeks=1).schedule(roadmap, "weekly", 1, MONDAY)
    assert info.value.overflow_hours == 1.0


@pytest.mark.asyncio
@pytest.mark.parametrize("plan_type, hours, start", [
    ("weekly", 0, MONDAY),
    ("weekly", 41, MONDAY),
    ("weekly", 2.5, MONDAY),
    ("daily", 10, MONDAY),
    ("weekly", 10, "2024-01-01"),
])
async def test_invalid_inputs_are_rejected_before_the_oracle(fake_oracle, react_roadmap, plan_type, hours, start):
    oracle = fake_oracle(reply={"events": []})
    with pytest.raises(ValidationError):
        await oracle_scheduler(oracle).schedule(react_roadmap, plan_type, hours, start)
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_empty_roadmap_is_rejected():
    roadmap = Roadmap(title="Empty", subject="Nothing")
    with pytest.raises(ValidationError):
        await local_scheduler().schedule(roadmap, "weekly", 10, MONDAY)


# ─── Oracle drafts ────────────────────────────────────────

@pytest.fixture
def two_step_roadmap():
    return Roadmap(id="r1", title="Python", subject="Programming", subtasks=[
        Subtask(id="a", title="Syntax", estimated_hours=2),
        Subtask(id="b", title="Testing", estimated_hours=1, prerequisites=["a"]),
    ])


@pytest.mark.asyncio
async def test_oracle_draft_times_are_kept_when_valid(fake_oracle, two_step_roadmap):
    oracle = fake_oracle(reply={"events": [
        event("b", at(2, 10), at(2, 11), "Study Session: Testing"),
        event("a", at(1, 14), at(1, 16), "Study Session: Syntax"),
    ]})
    plan = await oracle_scheduler(oracle).build_plan(two_step_roadmap, "weekly", 10, MONDAY)

    assert plan.source == PlanSource.ORACLE
    assert [(s.subtask_id, s.start, s.end) for s in plan.sessions] == [
        ("a", at(1, 14), at(1, 16)),
        ("b", at(2, 10), at(2, 11)),
    ]
    assert "[id: a]" in oracle.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_oracle_draft_violating_prerequisites_is_shifted(fake_oracle, two_step_roadmap):
    oracle = fake_oracle(reply=[
        event("b", at(1, 9), at(1, 10)),
        event("a", at(2, 9), at(2, 11)),
    ])
    sessions = await oracle_scheduler(oracle).schedule(two_step_roadmap, "weekly", 10, MONDAY)

    assert [(s.subtask_id, s.start, s.end) for s in sessions] == [
        ("a", at(2, 9), at(2, 11)),
        ("b", at(2, 11, 15), at(2, 12, 15)),
    ]


@pytest.mark.asyncio
async def test_oracle_draft_durations_and_coverage_are_repaired(fake_oracle):
    roadmap = Roadmap(id="r2", title="Python", subject="Programming", subtasks=[
        Subtask(id="a", title="Syntax", estimated_hours=4),
        Subtask(id="b", title="Testing", estimated_hours=0.5),
    ])
    oracle = fake_oracle(reply={"events": [
        event("a", at(1, 9), at(1, 13)),             # too long for one session
        event(None, at(1, 15), at(1, 15, 15), "Study Session: Testing"),  # too short, matched by title
        {"summary": "Lunch", "start": {"dateTime": "soon"}},
    ]})
    sessions = await oracle_scheduler(oracle).schedule(roadmap, "weekly", 10, MONDAY)

    assert_plan_invariants(sessions, roadmap, 10)
    testing = [s for s in sessions if s.subtask_id == "b"]
    assert len(testing) == 1 and testing[0].duration_hours == 1.0
    assert max(s.duration_hours for s in sessions) == 3


@pytest.mark.asyncio
async def test_short_oracle_sessions_are_raised_to_one_hour(fake_oracle):
    roadmap = Roadmap(title="Python", subject="Programming", subtasks=[
        Subtask(id="a", title="Syntax", estimated_hours=2),
    ])
    oracle = fake_oracle(reply={"events": [event("a", at(1, 9), at(1, 9, 30))]})
    sessions = await oracle_scheduler(oracle).schedule(roadmap, "weekly", 10, MONDAY)

    assert_plan_invariants(sessions, roadmap, 10)
    assert [(s.start, s.end) for s in sessions] == [
        (at(1, 9), at(1, 10)),
        (at(1, 10, 15), at(1, 11, 15)),
    ]


@pytest.mark.asyncio
async def test_overlapping_oracle_sessions_are_separated(fake_oracle):
    roadmap = Roadmap(title="Chem", subject="Science", subtasks=[
        Subtask(id="a", title="Atoms", estimated_hours=1),
        Subtask(id="b", title="Bonds", estimated_hours=1),
    ])
    oracle = fake_oracle(reply={"events": [
        event("a", at(1, 10), at(1, 11)),
        event("b", at(1, 10, 30), at(1, 11, 30)),
    ]})
    sessions = await oracle_scheduler(oracle).schedule(roadmap, "weekly", 10, MONDAY)
    assert [(s.subtask_id, s.start) for s in sessions] == [("a", at(1, 10)), ("b", at(1, 11, 15))]


@pytest.mark.asyncio
async def test_oracle_draft_over_the_weekly_cap_is_deferred(fake_oracle):
    roadmap = Roadmap(title="Chem", subject="Science", subtasks=[
        Subtask(id=str(i), title=f"Topic {i}", estimated_hours=2) for i in range(3)
    ])
    oracle = fake_oracle(reply={"events": [
        event(str(i), at(1 + i, 9), at(1 + i, 11)) for i in range(3)
    ]})
    plan = await oracle_scheduler(oracle).build_plan(roadmap, "weekly", 4, MONDAY)

    assert_plan_invariants(plan.sessions, roadmap, 4)
    assert plan.sessions[2].start >= plan.sessions[0].end + timedelta(days=7) - timedelta(hours=2)
    assert plan.deferred_hours == 2.0


@pytest.mark.asyncio
async def test_oracle_start_past_the_plan_horizon_is_ignored(fake_oracle):
    roadmap = Roadmap(title="Chem", subject="Science", subtasks=[
        Subtask(id="a", title="Atoms", estimated_hours=2),
    ])
    oracle = fake_oracle(reply={"events": [
        event("a", datetime(2027, 10, 8, 9, tzinfo=UTC), datetime(2027, 10, 8, 11, tzinfo=UTC)),
    ]})
    plan = await oracle_scheduler(oracle).build_plan(roadmap, "weekly", 10, date(2025, 10, 8))

    assert plan.source == PlanSource.ORACLE
    assert [(s.start, s.end) for s in plan.sessions] == [
        (datetime(2025, 10, 8, 9, tzinfo=UTC), datetime(2025, 10, 8, 11, tzinfo=UTC)),
    ]


@pytest.mark.asyncio
async def test_unparseable_oracle_reply_falls_back_to_local(fake_oracle, two_step_roadmap):
    oracle = fake_oracle(reply="I'd suggest studying a bit every day!")
    plan = await oracle_scheduler(oracle).build_plan(two_step_roadmap, "weekly", 10, MONDAY)
    assert plan.source == PlanSource.LOCAL
    assert_plan_invariants(plan.sessions, two_step_roadmap, 10)


@pytest.mark.asyncio
async def test_fallback_can_be_disabled(fake_oracle, two_step_roadmap):
    oracle = fake_oracle(error=GenerationError("Oracle did not answer within 45s"))
    with pytest.raises(GenerationError):
        await oracle_scheduler(oracle, allow_fallback=False).schedule(two_step_roadmap, "weekly", 10, MONDAY)


@pytest.mark.asyncio
async def test_quota_errors_are_not_hidden_by_fallback(fake_oracle, two_step_roadmap):
    oracle = fake_oracle(error=QuotaExceededError("Payment required", payment_required=True))
    with pytest.raises(QuotaExceededError):
        await oracle_scheduler(oracle).schedule(two_step_roadmap, "weekly", 10, MONDAY)


# ─── Decompose → schedule ─────────────────────────────────

@pytest.mark.asyncio
async def test_learn_react_round_trip(fake_oracle):
    oracle = fake_oracle(reply=[
        {"title": "JavaScript refresher", "description": "ES6+", "estimated_hours": 4, "prerequisites": []},
        {"title": "Components and JSX", "description": "JSX syntax", "estimated_hours": 3,
         "prerequisites": ["JavaScript refresher"]},
        {"title": "State and effects", "description": "useState, useEffect", "estimated_hours": 5,
         "prerequisites": ["Components and JSX"]},
        {"title": "Routing", "description": "React Router", "estimated_hours": 2.5,
         "prerequisites": ["Components and JSX"]},
        {"title": "Further reading", "description": "Optional", "estimated_hours": 0},
        {"title": "Todo app", "description": "Capstone", "estimated_hours": 6,
         "prerequisites": ["State and effects", "Routing"]},
    ])
    subtasks = await GoalDecomposer(oracle).decompose("Learn React", "Web Development", "intermediate")
    assert 5 <= len(subtasks) <= 12
    roadmap = Roadmap(title="Learn React", subject="Web Development", subtasks=subtasks)

    start = date(2025, 10, 8)
    sessions = await local_scheduler().schedule(roadmap, "weekly", 10, start)

    assert_plan_invariants(sessions, roadmap, 10)
    assert all(timedelta(hours=1) <= s.end - s.start <= timedelta(hours=3) for s in sessions)
    assert sessions[0].start == datetime(2025, 10, 8, 9, tzinfo=UTC)
    scheduled = {s.subtask_id for s in sessions}
    assert scheduled == {st.id for st in subtasks if st.estimated_hours > 0}

    by_title = {st.title: st.id for st in subtasks}
    first_start = {}
    last_end = {}
    for s in sessions:
        first_start.setdefault(s.subtask_id, s.start)
        last_end[s.subtask_id] = s.end
    assert last_end[by_title["State and effects"]] <= first_start[by_title["Todo app"]]
    assert last_end[by_title["Routing"]] <= first_start[by_title["Todo app"]]
