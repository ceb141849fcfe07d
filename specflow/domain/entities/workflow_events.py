"""Workflow event types for listeners and SSE streaming."""

from enum import Enum

from pydantic import BaseModel

from specflow.domain.entities.workflow_state import WorkflowPhase


class WorkflowEventType(str, Enum):
    """Event types emitted by the workflow engine."""

    STATE = "state"  # any committed state change
    PHASE_CHANGED = "phase_changed"
    GENERATION_STARTED = "generation_started"
    GENERATION_COMPLETED = "generation_completed"
    ERROR = "error"
    RESET = "reset"


class WorkflowEvent(BaseModel):
    """Single engine event."""

    event_type: WorkflowEventType
    phase: WorkflowPhase
    previous_phase: WorkflowPhase | None = None
    message: str | None = None
