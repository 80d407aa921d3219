"""Session-side schemas: phases, phase records, outputs, sessions.

A Session owns six PhaseRecords (one per planning phase, always present)
plus the accumulated global_data merged from every completed phase.
"""

import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from planforge.storage.db import utc_now_iso


class Phase(str, Enum):
    """Planning phases, in their fixed order, plus the terminal state."""
    ANALYST = "analyst"
    PM = "pm"
    ARCHITECT = "architect"
    DESIGN_ARCHITECT = "designArchitect"
    PO = "po"
    SM = "sm"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    DELETED = "deleted"


class Output(BaseModel):
    """A document produced when a phase is completed."""

    type: str = Field(description="Document kind, e.g. 'project-brief', 'prd', 'story'")
    content: str = ""
    filename: Optional[str] = None

    @model_validator(mode="after")
    def _default_filename(self) -> "Output":
        if not self.filename:
            self.filename = f"{self.type}.md"
        return self


class ChecklistResult(BaseModel):
    """Responses recorded for one checklist during a phase."""

    responses: dict[str, Any] = Field(default_factory=dict)
    total_items: Optional[int] = None
    completion_percentage: Optional[int] = None
    timestamp: str = Field(default_factory=utc_now_iso)

    @model_validator(mode="after")
    def _compute_completion(self) -> "ChecklistResult":
        if self.completion_percentage is None:
            checked = sum(1 for value in self.responses.values() if value)
            total = self.total_items or len(self.responses)
            self.completion_percentage = round(checked / total * 100) if total else 0
        return self


class PhaseRecord(BaseModel):
    """State of a single phase. Replaced wholesale when re-completed."""

    completed: bool = False
    data: dict[str, Any] = Field(default_factory=dict)
    outputs: list[Output] = Field(default_factory=list)
    checklist_results: dict[str, ChecklistResult] = Field(default_factory=dict)
    completed_at: Optional[str] = None


def _empty_phases() -> dict[str, PhaseRecord]:
    return {
        phase.value: PhaseRecord()
        for phase in Phase
        if phase is not Phase.COMPLETED
    }


class Session(BaseModel):
    """A planning session."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_name: str
    current_phase: Phase = Phase.ANALYST
    status: SessionStatus = SessionStatus.ACTIVE
    phases: dict[str, PhaseRecord] = Field(default_factory=_empty_phases)
    global_data: dict[str, Any] = Field(default_factory=dict)
    generated_files: list[str] = Field(default_factory=list)
    revision: int = Field(
        default=0,
        description="Monotonic counter, incremented on every persisted write",
    )
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None


class SessionSummary(BaseModel):
    """Lightweight session listing entry."""

    id: str
    project_name: str
    current_phase: Phase
    status: SessionStatus
    completed_phases: list[str] = Field(default_factory=list)
    progress: int = 0
    created_at: str
    updated_at: str


# --- API request/response bodies ---


class CreateSessionRequest(BaseModel):
    project_name: str = ""


class UpdateSessionRequest(BaseModel):
    project_name: Optional[str] = None
    status: Optional[SessionStatus] = None
    expected_revision: Optional[int] = None


class CompletePhaseRequest(BaseModel):
    """Body for completing a phase."""

    data: dict[str, Any] = Field(default_factory=dict)
    outputs: list[Output] = Field(default_factory=list)
    checklist_results: dict[str, ChecklistResult] = Field(default_factory=dict)
    expected_revision: Optional[int] = Field(
        default=None,
        description="Revision the caller last read; stale writes are rejected",
    )


class CompletePhaseResponse(BaseModel):
    session: Session
    next_phase: Phase
    progress: int
