"""Roadmap + subtask CRUD routes."""

from typing import List

import pydantic
from fastapi import APIRouter, HTTPException

from brain.errors import PlannerError
from roadmaps import store
from roadmaps.schemas import (
    RoadmapCreate,
    RoadmapResponse,
    RoadmapUpdate,
    Subtask,
    SubtaskCreate,
    SubtaskUpdate,
)
from server.errors import to_http_exception

router = APIRouter()


def _invalid(exc: pydantic.ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))


@router.post("/roadmaps", response_model=RoadmapResponse)
def create_roadmap(body: RoadmapCreate):
    try:
        roadmap = store.create_roadmap(body)
    except pydantic.ValidationError as exc:
        raise _invalid(exc) from exc
    return RoadmapResponse.from_roadmap(roadmap)


@router.get("/roadmaps", response_model=List[RoadmapResponse])
def list_roadmaps():
    return [RoadmapResponse.from_roadmap(r) for r in store.list_roadmaps()]


@router.get("/roadmaps/{roadmap_id}", response_model=RoadmapResponse)
def get_roadmap(roadmap_id: str):
    try:
        return RoadmapResponse.from_roadmap(store.get_roadmap(roadmap_id))
    except PlannerError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/roadmaps/{roadmap_id}", response_model=RoadmapResponse)
def update_roadmap(roadmap_id: str, body: RoadmapUpdate):
    try:
        return RoadmapResponse.from_roadmap(store.update_roadmap(roadmap_id, body))
    except pydantic.ValidationError as exc:
        raise _invalid(exc) from exc
    except PlannerError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/roadmaps/{roadmap_id}")
def delete_roadmap(roadmap_id: str):
    try:
        store.delete_roadmap(roadmap_id)
    except PlannerError as exc:
        raise to_http_exception(exc) from exc
    return {"message": "Roadmap deleted"}


# ─── Subtasks ─────────────────────────────────────────────

@router.post("/roadmaps/{roadmap_id}/subtasks", response_model=Subtask)
def add_subtask(roadmap_id: str, body: SubtaskCreate):
    try:
        return store.add_subtask(roadmap_id, body)
    except pydantic.ValidationError as exc:
        raise _invalid(exc) from exc
    except PlannerError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/roadmaps/{roadmap_id}/subtasks/{subtask_id}", response_model=Subtask)
def update_subtask(roadmap_id: str, subtask_id: str, body: SubtaskUpdate):
    try:
        return store.update_subtask(roadmap_id, subtask_id, body)
    except pydantic.ValidationError as exc:
        raise _invalid(exc) from exc
    except PlannerError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/roadmaps/{roadmap_id}/subtasks/{subtask_id}")
def delete_subtask(roadmap_id: str, subtask_id: str):
    try:
        store.delete_subtask(roadmap_id, subtask_id)
    except PlannerError as exc:
        raise to_http_exception(exc) from exc
    return {"message": "Subtask deleted"}
