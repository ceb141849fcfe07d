"""Workflow state schema - the persisted single source of truth."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class WorkflowPhase(str, Enum):
    """Ordered workflow phases. COMPLETE is terminal."""

    REQUIREMENTS = "requirements"
    DESIGN = "design"
    TASKS = "tasks"
    COMPLETE = "complete"


PHASE_ORDER: tuple[WorkflowPhase, ...] = (
    WorkflowPhase.REQUIREMENTS,
    WorkflowPhase.DESIGN,
    WorkflowPhase.TASKS,
    WorkflowPhase.COMPLETE,
)

# Phases that hold generated content (everything but COMPLETE)
CONTENT_PHASES: tuple[WorkflowPhase, ...] = PHASE_ORDER[:-1]

ApprovalStatus = Literal["approved", "pending"]


def phase_index(phase: WorkflowPhase) -> int:
    """Position of phase in the linear order."""
    return PHASE_ORDER.index(phase)


def next_phase_of(phase: WorkflowPhase) -> WorkflowPhase | None:
    """Following phase, or None at COMPLETE."""
    idx = phase_index(phase)
    return PHASE_ORDER[idx + 1] if idx < len(PHASE_ORDER) - 1 else None


def previous_phase_of(phase: WorkflowPhase) -> WorkflowPhase | None:
    """Preceding phase, or None at REQUIREMENTS."""
    idx = phase_index(phase)
    return PHASE_ORDER[idx - 1] if idx > 0 else None


class ContextFile(BaseModel):
    """User-supplied auxiliary file. Never mutated after creation."""

    model_config = {"frozen": True}

    id: str
    name: str
    type: str = "text"  # "text", "image", "document", "code" or a MIME type
    mime_type: str = ""
    content: str = ""
    size: int = 0
    last_modified: float = 0


class ApprovalState(BaseModel):
    """Per-phase approval flags."""

    requirements: bool = False
    design: bool = False
    tasks: bool = False


class PhaseTiming(BaseModel):
    """Wall-clock start/end (epoch ms) and elapsed ms of the last attempt."""

    start_time: float = 0
    end_time: float = 0
    elapsed: float = 0


class TimingState(BaseModel):
    """Timing per content phase."""

    requirements: PhaseTiming = Field(default_factory=PhaseTiming)
    design: PhaseTiming = Field(default_factory=PhaseTiming)
    tasks: PhaseTiming = Field(default_factory=PhaseTiming)


class TokenUsage(BaseModel):
    """Token usage reported for one generation."""

    prompt: int = 0
    completion: int = 0
    total: int = 0


class CostInfo(BaseModel):
    """Derived cost in USD."""

    prompt: float = 0.0
    completion: float = 0.0
    total: float = 0.0


class ApiResponseRecord(BaseModel):
    """Telemetry for the last successful generation of a phase."""

    model: str
    tokens: TokenUsage = Field(default_factory=TokenUsage)
    cost: CostInfo | None = None
    duration: float = 0  # ms
    timestamp: float = 0  # epoch ms


class ApiResponses(BaseModel):
    """Telemetry per content phase."""

    requirements: ApiResponseRecord | None = None
    design: ApiResponseRecord | None = None
    tasks: ApiResponseRecord | None = None


class RefinementVersion(BaseModel):
    """One refined revision of a phase document."""

    content: str
    timestamp: float
    feedback: str | None = None


class RefinementHistory(BaseModel):
    """Refinement revisions of one phase."""

    phase: WorkflowPhase
    versions: list[RefinementVersion] = Field(default_factory=list)


class WorkflowState(BaseModel):
    """Whole workflow state. Mutated only by whole-state replacement."""

    phase: WorkflowPhase = WorkflowPhase.REQUIREMENTS
    feature_name: str = ""
    description: str = ""
    requirements: str = ""
    design: str = ""
    tasks: str = ""
    context: list[ContextFile] = Field(default_factory=list)
    is_generating: bool = False
    error: str | None = None
    approvals: ApprovalState = Field(default_factory=ApprovalState)
    timing: TimingState = Field(default_factory=TimingState)
    api_responses: ApiResponses = Field(default_factory=ApiResponses)

    @model_validator(mode="after")
    def _check_approval_gate(self) -> "WorkflowState":
        """A phase is only reachable once every earlier phase is approved."""
        for earlier in PHASE_ORDER[: phase_index(self.phase)]:
            if not getattr(self.approvals, earlier.value):
                raise ValueError(
                    f"phase '{self.phase.value}' requires '{earlier.value}' to be approved"
                )
        return self

    def content_for(self, phase: WorkflowPhase) -> str:
        """Generated content of a phase ('' for COMPLETE)."""
        if phase == WorkflowPhase.COMPLETE:
            return ""
        return getattr(self, phase.value)

    def is_approved(self, phase: WorkflowPhase) -> bool:
        """Approval flag of a phase (COMPLETE counts as approved once reached)."""
        if phase == WorkflowPhase.COMPLETE:
            return self.phase == WorkflowPhase.COMPLETE
        return getattr(self.approvals, phase.value)

    def approval_status(self) -> dict[str, ApprovalStatus]:
        """Approvals as approved/pending labels."""
        return {
            p.value: "approved" if getattr(self.approvals, p.value) else "pending"
            for p in CONTENT_PHASES
        }

    def has_content(self) -> bool:
        """Whether any phase already holds generated content."""
        return any(self.content_for(p) for p in CONTENT_PHASES)
