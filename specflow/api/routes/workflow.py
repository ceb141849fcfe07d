"""Workflow API routes - drive the phase engine and stream its events."""

import asyncio
import json
import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from specflow.api.dependencies import get_workflow_engine
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
from specflow.domain.entities.workflow_events import WorkflowEvent, WorkflowEventType
from specflow.domain.entities.workflow_state import ContextFile
from specflow.domain.errors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflow", tags=["workflow"])


def _state_response(engine: PhaseWorkflowEngine, generation_started: bool | None = None) -> WorkflowStateResponse:
    state = engine.state
    return WorkflowStateResponse(
        state=state,
        approvals=state.approval_status(),
        can_proceed=engine.can_proceed(),
        is_complete=engine.is_complete(),
        next_phase=engine.next_phase(),
        previous_phase=engine.previous_phase(),
        model=engine.model_id,
        has_api_key=engine.has_api_key,
        refinement_history=engine.refinement_history,
        generation_started=generation_started,
    )


@contextmanager
def _workflow_errors() -> Iterator[None]:
    """Engine rule violations -> 409 Conflict."""
    try:
        yield
    except WorkflowError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("")
async def get_state(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    """Current state with derived flags."""
    return _state_response(engine)


@router.put("/input")
async def set_input(
    body: WorkflowInputRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    if body.feature_name is not None:
        engine.set_feature_name(body.feature_name)
    if body.description is not None:
        engine.set_description(body.description)
    return _state_response(engine)


@router.post("/configure")
async def configure(
    body: WorkflowConfigureRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    """Set the API key and/or model used by the engine."""
    engine.configure(api_key=body.api_key, model=body.model)
    return _state_response(engine)


@router.post("/context")
async def add_context(
    file: ContextFile,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    engine.add_context_file(file)
    return _state_response(engine)


@router.delete("/context/{file_id}")
async def remove_context(file_id: str, engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    engine.remove_context_file(file_id)
    return _state_response(engine)


@router.delete("/context")
async def clear_context(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    engine.clear_context()
    return _state_response(engine)


@router.put("/content")
async def update_content(
    body: PhaseContentRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.update_phase_content(body.phase, body.content)
    return _state_response(engine)


@router.post("/generate")
async def generate(
    body: WorkflowGenerateRequest | None = None,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    """Generate the current phase and wait for it. Failures are reported in state.error."""
    body = body or WorkflowGenerateRequest()
    state = engine.state
    with _workflow_errors():
        ok = await engine.generate_with_data(
            body.feature_name if body.feature_name is not None else state.feature_name,
            body.description if body.description is not None else state.description,
            body.context,
        )
    return _state_response(engine, generation_started=ok)


@router.post("/refine")
async def refine(
    body: WorkflowRefineRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    with _workflow_errors():
        ok = await engine.refine_current_phase(body.feedback)
    return _state_response(engine, generation_started=ok)


@router.post("/approve")
async def approve(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.approve()
    return _state_response(engine)


@router.post("/reject")
async def reject(
    body: WorkflowRejectRequest | None = None,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.reject(clear_content=(body or WorkflowRejectRequest()).clear_content)
    return _state_response(engine)


@router.put("/approval")
async def update_approval(
    body: ApprovalUpdateRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.update_approval(body.phase, body.status)
    return _state_response(engine)


@router.post("/proceed")
async def proceed(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.proceed()
    return _state_response(engine)


@router.post("/approve-and-proceed")
async def approve_and_proceed(
    wait: bool = False,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    """Approve, move on and start generating the next phase.

    wait=true blocks until that generation finishes; otherwise progress is
    visible through GET /workflow or /workflow/events.
    """
    with _workflow_errors():
        task = engine.approve_and_proceed()
    if task is not None and wait:
        await task
    return _state_response(engine, generation_started=task is not None)


@router.post("/back")
async def go_back(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    with _workflow_errors():
        engine.go_to_previous_phase()
    return _state_response(engine)


@router.post("/reset")
async def reset(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    engine.reset()
    return _state_response(engine)


@router.post("/error")
async def set_error(
    body: WorkflowErrorRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    engine.set_error(body.message)
    return _state_response(engine)


@router.delete("/error")
async def clear_error(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> WorkflowStateResponse:
    engine.clear_error()
    return _state_response(engine)


@router.get("/export")
async def export_data(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> dict:
    return engine.export_data()


@router.post("/import")
async def import_data(
    body: WorkflowImportRequest,
    engine: PhaseWorkflowEngine = Depends(get_workflow_engine),
) -> WorkflowStateResponse:
    with _workflow_errors():
        imported = engine.import_data(body.data)
    if not imported:
        raise HTTPException(status_code=400, detail="Invalid workflow export")
    return _state_response(engine)


@router.get("/events")
async def events(engine: PhaseWorkflowEngine = Depends(get_workflow_engine)) -> EventSourceResponse:
    """SSE stream of engine events; every event carries the state snapshot."""
    queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue()
    unsubscribe = engine.subscribe(queue.put_nowait)

    async def event_generator():
        try:
            yield {
                "event": WorkflowEventType.STATE.value,
                "data": _state_response(engine).model_dump_json(),
            }
            while True:
                event = await queue.get()
                payload = {
                    "event": event.model_dump(mode="json"),
                    "state": engine.state.model_dump(mode="json"),
                }
                yield {"event": event.event_type.value, "data": json.dumps(payload)}
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())
