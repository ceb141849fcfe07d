"""Workflow DTOs."""

from typing import Any

from pydantic import BaseModel, Field

from specflow.domain.entities.workflow_state import (
    ApprovalStatus,
    ContextFile,
    RefinementHistory,
    WorkflowPhase,
    WorkflowState,
)


class WorkflowInputRequest(BaseModel):
    """Feature inputs; unset fields are left unchanged."""

    feature_name: str | None = Field(None, max_length=500)
    description: str | None = None


class WorkflowGenerateRequest(BaseModel):
    """Generate the current phase; inputs override the stored ones when given."""

    feature_name: str | None = Field(None, max_length=500)
    description: str | None = None
    context: list[ContextFile] | None = None


class WorkflowRefineRequest(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=50_000)


class WorkflowRejectRequest(BaseModel):
    clear_content: bool = True


class ApprovalUpdateRequest(BaseModel):
    phase: WorkflowPhase
    status: ApprovalStatus


class PhaseContentRequest(BaseModel):
    phase: WorkflowPhase
    content: str


class WorkflowErrorRequest(BaseModel):
    message: str = Field(..., min_length=1)


class WorkflowConfigureRequest(BaseModel):
    """Per-session credentials and model selection."""

    api_key: str | None = None
    model: str | None = None


class WorkflowImportRequest(BaseModel):
    data: dict[str, Any]


class WorkflowStateResponse(BaseModel):
    """State plus derived flags."""

    state: WorkflowState
    approvals: dict[str, ApprovalStatus]
    can_proceed: bool
    is_complete: bool
    next_phase: WorkflowPhase | None = None
    previous_phase: WorkflowPhase | None = None
    model: str
    has_api_key: bool
    refinement_history: list[RefinementHistory] = Field(default_factory=list)
    generation_started: bool | None = None  # set by generate/approve-and-proceed
