"""Study plan schemas."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from roadmaps.schemas import DifficultyLevel, new_id


class PlanType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PlanSource(str, Enum):
    ORACLE = "oracle"
    LOCAL = "local"


class Session(BaseModel):
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    subtask_id: Optional[str] = None
    index: int = 0
    part_number: int = 1
    total_parts: int = 1

    @model_validator(mode="after")
    def _check_times(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("session times must carry a UTC offset")
        if self.end <= self.start:
            raise ValueError("session must end after it starts")
        return self

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600

    def to_calendar_event(self) -> dict:
        """Google Calendar event body (the same shape the oracle drafts)."""
        return {
            "summary": self.summary,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat()},
            "end": {"dateTime": self.end.isoformat()},
        }


class StudyPlan(BaseModel):
    id: str = Field(default_factory=new_id)
    roadmap_id: str
    plan_type: PlanType
    hours_per_week: int
    starting_date: date
    sessions: list[Session] = Field(default_factory=list)
    source: PlanSource = PlanSource.LOCAL
    deferred_hours: float = 0.0
    weekly_hours: list[float] = Field(default_factory=list)


# ─── Requests ─────────────────────────────────────────────

class DecomposeRequest(BaseModel):
    goal: str
    subject: str
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE


class StudyPlanRequest(BaseModel):
    plan_type: PlanType = PlanType.WEEKLY
    hours_per_week: int = 10
    starting_date: Optional[date] = None
    use_oracle: bool = True
