"""Roadmap and subtask schemas."""

import uuid
from datetime import date
from enum import Enum
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator


def new_id() -> str:
    return uuid.uuid4().hex


class DifficultyLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class SubtaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def _required_text(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _dedupe(values: list[str]) -> list[str]:
    seen = []
    for v in values:
        v = v.strip()
        if v and v not in seen:
            seen.append(v)
    return seen


RequiredText = Annotated[str, AfterValidator(_required_text)]


# ─── Subtasks ─────────────────────────────────────────────

class Subtask(BaseModel):
    id: str = Field(default_factory=new_id)
    title: RequiredText
    description: str = ""
    estimated_hours: float = 0.0
    prerequisites: list[str] = Field(default_factory=list)
    completed: bool = False
    status: SubtaskStatus = SubtaskStatus.NOT_STARTED
    deadline: Optional[date] = None

    @field_validator("estimated_hours")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("estimated_hours must be >= 0")
        return v

    @model_validator(mode="after")
    def _sync_completion(self):
        # status is authoritative when given; otherwise derive it from completed
        if "status" in self.model_fields_set:
            self.completed = self.status == SubtaskStatus.COMPLETED
        elif self.completed:
            self.status = SubtaskStatus.COMPLETED
        return self


class SubtaskCreate(BaseModel):
    title: str
    description: str = ""
    estimated_hours: float = 0.0
    prerequisites: list[str] = Field(default_factory=list)
    deadline: Optional[date] = None


class SubtaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    estimated_hours: Optional[float] = None
    prerequisites: Optional[list[str]] = None
    status: Optional[SubtaskStatus] = None
    completed: Optional[bool] = None
    deadline: Optional[date] = None


# ─── Roadmaps ─────────────────────────────────────────────

class Roadmap(BaseModel):
    id: str = Field(default_factory=new_id)
    title: RequiredText
    subject: RequiredText
    description: str = ""
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    deadline: Optional[date] = None
    tags: Annotated[list[str], AfterValidator(_dedupe)] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)

    @field_validator("subtasks")
    @classmethod
    def _unique_ids(cls, subtasks: list[Subtask]) -> list[Subtask]:
        ids = [s.id for s in subtasks]
        if len(ids) != len(set(ids)):
            raise ValueError("subtask ids must be unique within a roadmap")
        return subtasks

    @property
    def progress(self) -> int:
        """Percentage of completed subtasks, 0 when there are none."""
        if not self.subtasks:
            return 0
        done = sum(1 for s in self.subtasks if s.completed)
        return round(done / len(self.subtasks) * 100)

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        return next((s for s in self.subtasks if s.id == subtask_id), None)


class RoadmapCreate(BaseModel):
    title: str
    subject: str
    description: str = ""
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    deadline: Optional[date] = None
    tags: list[str] = Field(default_factory=list)
    subtasks: list[SubtaskCreate] = Field(default_factory=list)


class RoadmapUpdate(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    difficulty: Optional[DifficultyLevel] = None
    deadline: Optional[date] = None
    tags: Optional[list[str]] = None


class RoadmapResponse(BaseModel):
    roadmap: Roadmap
    progress: int
    total_tasks: int
    completed_tasks: int

    @classmethod
    def from_roadmap(cls, roadmap: Roadmap) -> "RoadmapResponse":
        return cls(
            roadmap=roadmap,
            progress=roadmap.progress,
            total_tasks=len(roadmap.subtasks),
            completed_tasks=sum(1 for s in roadmap.subtasks if s.completed),
        )
