"""Brain routes: decompose a goal, generate and fetch study plans."""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends

from brain.decomposer import GoalDecomposer
from brain.errors import PlannerError
from brain.proposers import LocalPlanProposer, PlanProposer, select_proposer
from brain.scheduler import StudyPlanScheduler
from brain.schemas import DecomposeRequest, StudyPlan, StudyPlanRequest
from brain.validation import clamp_hours_per_week
from roadmaps import store
from server.config import PLANNER_TIMEZONE
from server.errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


def get_decomposer() -> GoalDecomposer:
    return GoalDecomposer()


def get_proposer() -> PlanProposer:
    return select_proposer()


@router.post("/decompose-goal")
async def decompose_goal(body: DecomposeRequest, decomposer: GoalDecomposer = Depends(get_decomposer)):
    try:
        subtasks = await decomposer.decompose(body.goal, body.subject, body.difficulty)
    except PlannerError as exc:
        logger.warning("Goal decomposition failed: %s", exc)
        raise to_http_exception(exc) from exc
    return {"subtasks": [s.model_dump(mode="json") for s in subtasks]}


@router.post("/roadmaps/{roadmap_id}/study-plan", response_model=StudyPlan)
async def generate_study_plan(
    roadmap_id: str,
    body: StudyPlanRequest,
    proposer: PlanProposer = Depends(get_proposer),
):
    """Generate (or regenerate) the roadmap's study plan and store it."""
    if not body.use_oracle:
        proposer = LocalPlanProposer()
    tz = ZoneInfo(PLANNER_TIMEZONE)
    starting_date = body.starting_date or datetime.now(tz).date()
    hours_per_week = clamp_hours_per_week(body.hours_per_week)

    try:
        roadmap = store.get_roadmap(roadmap_id)
        scheduler = StudyPlanScheduler(proposer=proposer, tz=tz)
        plan = await scheduler.build_plan(roadmap, body.plan_type, hours_per_week, starting_date)
        store.save_study_plan(plan)
    except PlannerError as exc:
        logger.warning("Study plan generation failed for roadmap %s: %s", roadmap_id, exc)
        raise to_http_exception(exc) from exc
    return plan


@router.get("/roadmaps/{roadmap_id}/study-plan", response_model=StudyPlan)
def get_study_plan(roadmap_id: str):
    try:
        return store.get_study_plan(roadmap_id)
    except PlannerError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/roadmaps/{roadmap_id}/study-plan")
def delete_study_plan(roadmap_id: str):
    try:
        store.delete_study_plan(roadmap_id)
    except PlannerError as exc:
        raise to_http_exception(exc) from exc
    return {"message": "Study plan deleted"}
