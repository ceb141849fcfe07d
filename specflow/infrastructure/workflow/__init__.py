"""Phase prompts for the spec workflow."""

from specflow.infrastructure.workflow.phase_prompts import (
    build_design_prompt,
    build_refinement_prompt,
    build_requirements_prompt,
    build_tasks_prompt,
    refinement_system_prompt_for,
    system_prompt_for,
)

__all__ = [
    "build_design_prompt",
    "build_refinement_prompt",
    "build_requirements_prompt",
    "build_tasks_prompt",
    "refinement_system_prompt_for",
    "system_prompt_for",
]
