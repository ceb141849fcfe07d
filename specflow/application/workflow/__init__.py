"""Workflow application layer."""

from specflow.application.workflow.dto import (
    ApprovalUpdateRequest,
    PhaseContentRequest,
    WorkflowConfigureRequest,
    WorkflowErrorRequest,
    WorkflowGenerateRequest,
    WorkflowImportRequest,
    WorkflowInputRequest,
    WorkflowRefineRequest,
    WorkflowRejectRequest,
    WorkflowStateResponse,
)
from specflow.application.workflow.engine import PhaseWorkflowEngine

__all__ = [
    "ApprovalUpdateRequest",
    "PhaseContentRequest",
    "PhaseWorkflowEngine",
    "WorkflowConfigureRequest",
    "WorkflowErrorRequest",
    "WorkflowGenerateRequest",
    "WorkflowImportRequest",
    "WorkflowInputRequest",
    "WorkflowRefineRequest",
    "WorkflowRejectRequest",
    "WorkflowStateResponse",
]
