"""Calendar export schemas."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from brain.errors import ExportPartialFailure


class ExportStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class SessionExportOutcome(BaseModel):
    index: int
    event_id: str
    status: ExportStatus
    error: Optional[str] = None


class ExportResult(BaseModel):
    roadmap_id: str
    calendar_id: str
    outcomes: list[SessionExportOutcome] = Field(default_factory=list)

    @property
    def failed(self) -> list[SessionExportOutcome]:
        return [o for o in self.outcomes if o.status == ExportStatus.FAILED]

    @property
    def failed_indices(self) -> list[int]:
        return [o.index for o in self.failed]

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self):
        if self.failed:
            raise ExportPartialFailure(
                f"{len(self.failed)} of {len(self.outcomes)} sessions failed to export",
                failures=[o.model_dump(mode="json") for o in self.failed],
            )


class ExportRequest(BaseModel):
    calendar_id: Optional[str] = None
    # retry only these session indices; None exports the whole plan
    indices: Optional[list[int]] = None


class ExportResponse(BaseModel):
    roadmap_id: str
    calendar_id: str
    outcomes: list[SessionExportOutcome]
    failed_indices: list[int]
