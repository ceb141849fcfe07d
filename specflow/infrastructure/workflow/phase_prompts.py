"""Prompt builders for the requirements, design and tasks phases."""

from specflow.domain.entities.workflow_state import ContextFile, WorkflowPhase

REQUIREMENTS_SYSTEM = """You are creating a requirements document in EARS format based on the provided feature description. Generate an initial requirements document with clear user stories and EARS acceptance criteria using WHEN, IF, WHILE, WHERE keywords.

Use this structure:

# Requirements Document

## Introduction
[Purpose, scope and value of the feature]

## Requirements

### Requirement 1: [Name]
**User Story:** As a [role], I want [feature], so that [benefit]

#### Acceptance Criteria
1. WHEN [event] THEN [system] SHALL [response]
2. IF [precondition] THEN [system] SHALL [response]

Every requirement must state what the system SHALL do. Keep requirements specific, testable and numbered hierarchically."""

DESIGN_SYSTEM = """You are creating a comprehensive design document based on approved requirements. Include technical architecture, components, data models, error handling, and testing strategy. Use Mermaid diagrams for complex relationships.

Use this structure:

# Design Document

## Overview
## Architecture
## Components and Interfaces
## Data Models
## Error Handling
## Testing Strategy

The design must address every requirement and state the rationale for key decisions."""

TASKS_SYSTEM = """You are creating an actionable implementation plan based on approved design. Convert the design into discrete, manageable coding tasks with numbered checkboxes, specific deliverables, and requirement references.

Task format:
- [ ] 1. [Action verb + what is built]
  - [Deliverable with file paths where applicable]
  - _Requirements: [requirement ids]_

Order tasks from foundation to integration and testing. Every requirement must be covered by at least one task."""

DEFAULT_SYSTEM = "You are creating technical specifications following standard formats."

REFINEMENT_SYSTEM = {
    WorkflowPhase.REQUIREMENTS: (
        "You are refining existing requirements based on feedback while maintaining EARS format and structure. "
        "Return the complete updated document, not just the changes."
    ),
    WorkflowPhase.DESIGN: (
        "You are refining existing design documents based on feedback while maintaining technical "
        "completeness and valid Mermaid diagrams. Return the complete updated document."
    ),
    WorkflowPhase.TASKS: (
        "You are refining implementation tasks based on feedback while maintaining the numbered checkbox "
        "format and requirement traceability. Return the complete updated task list."
    ),
}

DESCRIPTION_TRUNCATION_NOTE = "\n\n[Description truncated to fit token limits]"


def system_prompt_for(phase: WorkflowPhase) -> str:
    """System prompt for generating a phase."""
    if phase == WorkflowPhase.REQUIREMENTS:
        return REQUIREMENTS_SYSTEM
    if phase == WorkflowPhase.DESIGN:
        return DESIGN_SYSTEM
    if phase == WorkflowPhase.TASKS:
        return TASKS_SYSTEM
    return DEFAULT_SYSTEM


def refinement_system_prompt_for(phase: WorkflowPhase) -> str:
    """System prompt for refining a phase."""
    return REFINEMENT_SYSTEM.get(phase, "You are refining technical content based on feedback.")


def cap_description(description: str, max_chars: int) -> str:
    """Cut the raw description to max_chars, noting the cut."""
    if len(description) <= max_chars:
        return description
    return description[:max_chars] + DESCRIPTION_TRUNCATION_NOTE


def build_requirements_prompt(
    feature_name: str,
    description: str,
    context_files: list[ContextFile],
    max_prompt_chars: int = 12000,
) -> str:
    """Build user prompt from feature input and (already filtered) context files.

    File sections are appended while they fit max_prompt_chars; each file
    contributes at most 1000 characters.
    """
    prompt = f"Feature: {feature_name}\n\nDescription:\n{description}"
    if not context_files:
        return prompt

    prompt += "\n\nContext Files:\n"
    remaining = max_prompt_chars - len(prompt)
    for file in context_files:
        if remaining <= 100:
            break
        content = file.content or ""
        limit = min(1000, remaining - 100)
        if len(content) > limit:
            content = content[:limit] + "\n[Truncated]"
        section = f"\n## {file.name}:\n{content}\n"
        if len(section) <= remaining:
            prompt += section
            remaining -= len(section)
    return prompt


def build_design_prompt(requirements: str) -> str:
    """Build design prompt from approved requirements only."""
    return (
        "Based on the following approved requirements, create a comprehensive technical design "
        "document with architectural diagrams.\n\n"
        f"## Requirements:\n{requirements}"
    )


def build_tasks_prompt(requirements: str, design: str) -> str:
    """Build tasks prompt from approved requirements and design only."""
    return (
        "Based on the following approved requirements and design, create a detailed implementation "
        "task list with numbered checkboxes.\n\n"
        f"## Requirements:\n{requirements}\n\n"
        f"## Design:\n{design}"
    )


def build_refinement_prompt(phase: WorkflowPhase, current_content: str, feedback: str) -> str:
    """Build refinement prompt from the current document and user feedback."""
    return (
        f"Current {phase.value} content:\n{current_content}\n\n"
        f"User feedback: {feedback}\n\n"
        f"Please update the {phase.value} document based on this feedback while maintaining "
        "the overall structure and format."
    )
