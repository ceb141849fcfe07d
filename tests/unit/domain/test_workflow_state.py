"""Tests for the workflow state schema."""

import pytest
from pydantic import ValidationError

from specflow.domain.entities.workflow_state import (
    ApprovalState,
    ContextFile,
    WorkflowPhase,
    WorkflowState,
    next_phase_of,
    previous_phase_of,
)


class TestPhaseOrder:
    def test_next(self):
        assert next_phase_of(WorkflowPhase.REQUIREMENTS) == WorkflowPhase.DESIGN
        assert next_phase_of(WorkflowPhase.TASKS) == WorkflowPhase.COMPLETE
        assert next_phase_of(WorkflowPhase.COMPLETE) is None

    def test_previous(self):
        assert previous_phase_of(WorkflowPhase.REQUIREMENTS) is None
        assert previous_phase_of(WorkflowPhase.COMPLETE) == WorkflowPhase.TASKS


class TestWorkflowState:
    def test_defaults(self):
        state = WorkflowState()
        assert state.phase == WorkflowPhase.REQUIREMENTS
        assert state.is_generating is False
        assert state.error is None
        assert state.approval_status() == {
            "requirements": "pending",
            "design": "pending",
            "tasks": "pending",
        }
        assert state.has_content() is False

    def test_later_phase_requires_approvals(self):
        with pytest.raises(ValidationError, match="requires 'requirements'"):
            WorkflowState(phase=WorkflowPhase.DESIGN)

    def test_complete_requires_all_approvals(self):
        with pytest.raises(ValidationError):
            WorkflowState(
                phase=WorkflowPhase.COMPLETE,
                approvals=ApprovalState(requirements=True, design=True),
            )
        state = WorkflowState(
            phase=WorkflowPhase.COMPLETE,
            approvals=ApprovalState(requirements=True, design=True, tasks=True),
        )
        assert state.is_approved(WorkflowPhase.COMPLETE)

    def test_content_for(self):
        state = WorkflowState(requirements="R", design="D")
        assert state.content_for(WorkflowPhase.REQUIREMENTS) == "R"
        assert state.content_for(WorkflowPhase.TASKS) == ""
        assert state.content_for(WorkflowPhase.COMPLETE) == ""
        assert state.has_content() is True

    def test_round_trips_through_json(self):
        state = WorkflowState(
            feature_name="Login",
            context=[ContextFile(id="1", name="a.md", content="hello", size=5)],
        )
        restored = WorkflowState.model_validate_json(state.model_dump_json())
        assert restored == state

    def test_context_file_is_frozen(self):
        file = ContextFile(id="1", name="a.md")
        with pytest.raises(ValidationError):
            file.content = "changed"
