"""Phase workflow engine - requirements -> design -> tasks -> complete with approval gates.

The engine owns one WorkflowState and replaces it as a whole on every change
(model_copy), then notifies listeners and schedules a debounced save.

Generation protocol:
1. Preconditions are checked and prompts are built synchronously; failures
   land in state.error.
2. _begin_generation marks is_generating and bumps the generation sequence
   number in the same synchronous step, so no second generation can slip in.
3. _execute_generation awaits the generator (bounded by a timeout) and
   commits the result only if the sequence number is unchanged; a reset or
   import in between makes the result stale and it is dropped.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Literal

from pydantic import ValidationError

from specflow.domain.entities.workflow_events import WorkflowEvent, WorkflowEventType
from specflow.domain.entities.workflow_state import (
    CONTENT_PHASES,
    ApiResponseRecord,
    ApprovalStatus,
    ContextFile,
    PhaseTiming,
    RefinementHistory,
    RefinementVersion,
    TokenUsage,
    WorkflowPhase,
    WorkflowState,
    next_phase_of,
    phase_index,
    previous_phase_of,
)
from specflow.domain.errors import (
    GenerationInProgressError,
    GenerationTimeoutError,
    PhaseTransitionError,
    PreconditionError,
)
from specflow.domain.ports.config import AppConfig
from specflow.domain.ports.llm import (
    CompletionOptions,
    GenerationPort,
    GenerationRequest,
    GenerationResult,
    ModelInfo,
    ModelPricing,
)
from specflow.domain.services.context_filter import ContextFileFilter
from specflow.domain.services.drift_detector import has_prompt_changed
from specflow.domain.services.model_catalog import compute_cost
from specflow.domain.services.token_budget import TokenBudgetEnforcer
from specflow.infrastructure.persistence.workflow_store import WorkflowStatePersister
from specflow.infrastructure.workflow.phase_prompts import (
    build_design_prompt,
    build_refinement_prompt,
    build_requirements_prompt,
    build_tasks_prompt,
    cap_description,
    refinement_system_prompt_for,
    system_prompt_for,
)

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
TIMEOUT_MESSAGE = (
    "Request timed out after 3 minutes. Please try again with a shorter prompt or simpler requirements."
)

WorkflowListener = Callable[[WorkflowEvent], None]
GenerationKind = Literal["generate", "refine"]


class PhaseWorkflowEngine:
    """Drive the three content phases against a GenerationPort."""

    def __init__(
        self,
        generator: GenerationPort,
        config: AppConfig | None = None,
        persister: WorkflowStatePersister | None = None,
        api_key: str = "",
        model: ModelInfo | str | None = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._generator = generator
        self._config = config or AppConfig()
        self._persister = persister
        self._clock = clock
        self._timer = timer
        self._enforcer = TokenBudgetEnforcer(self._config.token_budget)
        self._file_filter = ContextFileFilter(self._config.context_files)
        self._listeners: list[WorkflowListener] = []
        self._history: dict[WorkflowPhase, RefinementHistory] = {}
        self._generation_seq = 0
        self._tasks: set[asyncio.Task] = set()
        self._api_key = ""
        self._model_id = self._config.generation.default_model
        self._pricing: ModelPricing | None = None
        self.configure(api_key=api_key or self._config.openrouter.api_key, model=model)
        self._state = persister.load() if persister else WorkflowState()

    # --- state, listeners, persistence ---

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    @property
    def refinement_history(self) -> list[RefinementHistory]:
        return [self._history[p] for p in CONTENT_PHASES if p in self._history]

    def configure(self, api_key: str | None = None, model: ModelInfo | str | None = None) -> None:
        """Set the API key and/or the model used for generation (pricing comes with ModelInfo)."""
        if api_key is not None:
            self._api_key = api_key.strip()
        if isinstance(model, ModelInfo):
            self._model_id = model.id
            self._pricing = model.pricing
        elif model:
            self._model_id = model
            self._pricing = None

    def subscribe(self, listener: WorkflowListener) -> Callable[[], None]:
        """Register an event listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: WorkflowEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("Workflow listener failed on %s", event.event_type.value, exc_info=True)

    def _commit(self, state: WorkflowState, *events: WorkflowEvent) -> None:
        self._state = state
        if self._persister is not None:
            self._persister.schedule(state)
        for event in events:
            self._emit(event)
        self._emit(WorkflowEvent(event_type=WorkflowEventType.STATE, phase=state.phase))

    def _update(self, *events: WorkflowEvent, **changes: Any) -> None:
        self._commit(self._state.model_copy(update=changes), *events)

    def close(self) -> None:
        """Flush pending persistence."""
        if self._persister is not None:
            self._persister.flush()

    def _now_ms(self) -> float:
        return self._clock() * 1000

    # --- guards ---

    def _ensure_idle(self) -> None:
        if self._state.is_generating:
            raise GenerationInProgressError("A generation is already in progress")

    def _record_error(self, message: str, phase: WorkflowPhase | None = None) -> None:
        phase = phase or self._state.phase
        logger.info("Workflow error in %s: %s", phase.value, message)
        self._update(
            WorkflowEvent(event_type=WorkflowEventType.ERROR, phase=phase, message=message),
            error=message,
        )

    # --- prompt construction ---

    def _requirements_prompts(
        self, feature_name: str, description: str, files: list[ContextFile]
    ) -> tuple[str, str]:
        limits = self._config.context_files
        user = build_requirements_prompt(
            feature_name,
            cap_description(description, limits.max_description_chars),
            self._file_filter.filter(files),
            max_prompt_chars=limits.max_prompt_chars,
        )
        return system_prompt_for(WorkflowPhase.REQUIREMENTS), user

    def _prompts_for(self, phase: WorkflowPhase, state: WorkflowState) -> tuple[str, str]:
        """System and user prompt for phase, built only from approved content.

        Raises:
            PreconditionError: If a needed earlier phase is empty or unapproved.

        """
        if phase == WorkflowPhase.REQUIREMENTS:
            return self._requirements_prompts(state.feature_name, state.description, state.context)
        if phase == WorkflowPhase.DESIGN:
            self._require_approved(state, WorkflowPhase.REQUIREMENTS)
            return system_prompt_for(phase), build_design_prompt(state.requirements)
        if phase == WorkflowPhase.TASKS:
            self._require_approved(state, WorkflowPhase.REQUIREMENTS)
            self._require_approved(state, WorkflowPhase.DESIGN)
            return system_prompt_for(phase), build_tasks_prompt(state.requirements, state.design)
        raise PreconditionError("Workflow is already complete")

    @staticmethod
    def _require_approved(state: WorkflowState, phase: WorkflowPhase) -> None:
        if not state.content_for(phase).strip():
            raise PreconditionError(f"Cannot generate: {phase.value} content is empty")
        if not state.is_approved(phase):
            raise PreconditionError(f"Cannot generate: {phase.value} must be approved first")

    def _check_generation_preconditions(self, system: str, user: str) -> None:
        if not self._api_key:
            raise PreconditionError("Valid OpenRouter API key is required")
        gen = self._config.generation
        validation = self._enforcer.validate(
            system, user, max_output_tokens=gen.max_tokens, model_context_limit=gen.model_context_limit
        )
        if not validation.valid:
            raise PreconditionError(validation.error or "Prompt exceeds the model context limit")

    # --- generation ---

    def _begin_generation(self, phase: WorkflowPhase, base: WorkflowState) -> tuple[int, float]:
        """Mark is_generating and take a sequence token. Synchronous."""
        self._generation_seq += 1
        timing = base.timing.model_copy(update={phase.value: PhaseTiming(start_time=self._now_ms())})
        self._commit(
            base.model_copy(update={"is_generating": True, "error": None, "timing": timing}),
            WorkflowEvent(event_type=WorkflowEventType.GENERATION_STARTED, phase=phase),
        )
        return self._generation_seq, self._timer()

    async def _call_generator(self, request: GenerationRequest) -> GenerationResult:
        try:
            return await asyncio.wait_for(
                self._generator.generate(request),
                timeout=self._config.generation.timeout_seconds,
            )
        except TimeoutError as e:
            raise GenerationTimeoutError(TIMEOUT_MESSAGE) from e

    def _finish_timing(self, phase: WorkflowPhase, started: float) -> tuple[PhaseTiming, float]:
        elapsed = (self._timer() - started) * 1000
        end = self._now_ms()
        start = getattr(self._state.timing, phase.value).start_time
        return PhaseTiming(start_time=start, end_time=end, elapsed=elapsed), end

    async def _execute_generation(
        self,
        token: int,
        started: float,
        phase: WorkflowPhase,
        system_prompt: str,
        user_prompt: str,
        kind: GenerationKind = "generate",
        feedback: str | None = None,
    ) -> bool:
        gen = self._config.generation
        request = GenerationRequest(
            api_key=self._api_key,
            model=self._model_id,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            options=CompletionOptions(temperature=gen.temperature, max_tokens=gen.max_tokens),
        )
        try:
            result = await self._call_generator(request)
        except asyncio.CancelledError:
            if token == self._generation_seq:
                self._fail_generation(phase, started, "Generation cancelled", clear_content=False)
            raise
        except Exception as e:
            # Any failure ends the attempt: is_generating is released, error recorded
            if token != self._generation_seq:
                logger.info("Dropping stale %s failure for %s", kind, phase.value)
                return False
            self._fail_generation(phase, started, str(e) or "Generation failed", clear_content=kind == "generate")
            return False

        if token != self._generation_seq:
            logger.info("Dropping stale %s result for %s", kind, phase.value)
            return False

        timing, end = self._finish_timing(phase, started)
        record = ApiResponseRecord(
            model=result.model or self._model_id,
            tokens=TokenUsage(
                prompt=result.usage.prompt_tokens if result.usage else 0,
                completion=result.usage.completion_tokens if result.usage else 0,
                total=result.usage.total_tokens if result.usage else 0,
            ),
            cost=compute_cost(result.usage, self._pricing),
            duration=timing.elapsed,
            timestamp=end,
        )
        state = self._state
        self._commit(
            state.model_copy(
                update={
                    phase.value: result.content,
                    "is_generating": False,
                    "error": None,
                    "timing": state.timing.model_copy(update={phase.value: timing}),
                    "api_responses": state.api_responses.model_copy(update={phase.value: record}),
                }
            ),
            WorkflowEvent(event_type=WorkflowEventType.GENERATION_COMPLETED, phase=phase),
        )
        if kind == "refine":
            self._append_history(phase, result.content, feedback)
        logger.info("Generated %s in %.0f ms (%d chars)", phase.value, timing.elapsed, len(result.content))
        return True

    def _fail_generation(self, phase: WorkflowPhase, started: float, message: str, clear_content: bool) -> None:
        timing, _ = self._finish_timing(phase, started)
        state = self._state
        update: dict[str, Any] = {
            "is_generating": False,
            "error": message,
            "timing": state.timing.model_copy(update={phase.value: timing}),
        }
        if clear_content:
            update[phase.value] = ""
            update["api_responses"] = state.api_responses.model_copy(update={phase.value: None})
        logger.warning("Generation of %s failed: %s", phase.value, message)
        self._commit(
            state.model_copy(update=update),
            WorkflowEvent(event_type=WorkflowEventType.ERROR, phase=phase, message=message),
        )

    def _append_history(self, phase: WorkflowPhase, content: str, feedback: str | None) -> None:
        history = self._history.get(phase) or RefinementHistory(phase=phase)
        version = RefinementVersion(content=content, timestamp=self._now_ms(), feedback=feedback)
        self._history[phase] = history.model_copy(update={"versions": [*history.versions, version]})

    async def generate_with_data(
        self, feature_name: str, description: str, context_files: list[ContextFile] | None = None
    ) -> bool:
        """Generate the current phase. Returns True on success.

        In the requirements phase the given inputs are stored and used for the
        prompt; a substantively different input resets the whole workflow first.
        Design and tasks are built from approved state content only.

        Raises:
            GenerationInProgressError: If a generation is already running.

        """
        self._ensure_idle()
        state = self._state
        phase = state.phase
        files = list(context_files) if context_files is not None else list(state.context)

        base = state
        if phase == WorkflowPhase.REQUIREMENTS:
            drifted = state.has_content() and has_prompt_changed(
                state.description, description, state.feature_name, feature_name
            )
            if drifted:
                logger.info("Feature input changed substantially, resetting workflow")
                self._history.clear()
                base = WorkflowState(feature_name=feature_name, description=description, context=files)
            else:
                base = state.model_copy(
                    update={"feature_name": feature_name, "description": description, "context": files}
                )

        try:
            system, user = self._prompts_for(phase, base)
            self._check_generation_preconditions(system, user)
        except PreconditionError as e:
            if base is not state:
                self._commit(base)
            self._record_error(str(e), phase)
            return False

        token, started = self._begin_generation(phase, base)
        return await self._execute_generation(token, started, phase, system, user)

    async def generate_current_phase(self) -> bool:
        """Generate the current phase from the stored inputs."""
        state = self._state
        return await self.generate_with_data(state.feature_name, state.description, state.context)

    async def refine_current_phase(self, feedback: str) -> bool:
        """Rewrite the current phase from its content and feedback. Content survives a failure."""
        self._ensure_idle()
        phase = self._state.phase
        if phase == WorkflowPhase.COMPLETE:
            self._record_error("Workflow is already complete", phase)
            return False
        current = self._state.content_for(phase)
        try:
            if not current.strip():
                raise PreconditionError("No content to refine. Generate initial content first.")
            if not feedback or not feedback.strip():
                raise PreconditionError("Feedback is required to refine content")
            system = refinement_system_prompt_for(phase)
            user = build_refinement_prompt(phase, current, feedback.strip())
            self._check_generation_preconditions(system, user)
        except PreconditionError as e:
            self._record_error(str(e), phase)
            return False

        token, started = self._begin_generation(phase, self._state)
        return await self._execute_generation(
            token, started, phase, system, user, kind="refine", feedback=feedback.strip()
        )

    # --- approvals and navigation ---

    def approve(self) -> None:
        """Approve the current phase."""
        self._ensure_idle()
        phase = self._state.phase
        if phase == WorkflowPhase.COMPLETE:
            return
        self._update(approvals=self._state.approvals.model_copy(update={phase.value: True}))

    def reject(self, clear_content: bool = True) -> None:
        """Withdraw approval of the current phase, clearing its content by default."""
        self._ensure_idle()
        state = self._state
        phase = state.phase
        if phase == WorkflowPhase.COMPLETE:
            return
        update: dict[str, Any] = {"approvals": state.approvals.model_copy(update={phase.value: False})}
        if clear_content:
            update[phase.value] = ""
            update["api_responses"] = state.api_responses.model_copy(update={phase.value: None})
        self._update(**update)

    def update_approval(self, phase: WorkflowPhase, status: ApprovalStatus) -> None:
        """Set any content phase to approved or pending.

        Raises:
            PhaseTransitionError: If setting pending would strand the current
                phase behind an unapproved earlier phase.

        """
        if phase == WorkflowPhase.COMPLETE:
            raise PhaseTransitionError("The complete phase has no approval")
        approved = status == "approved"
        if not approved and phase_index(phase) < phase_index(self._state.phase):
            raise PhaseTransitionError(
                f"Cannot set {phase.value} to pending while in {self._state.phase.value}"
            )
        self._update(approvals=self._state.approvals.model_copy(update={phase.value: approved}))

    def can_proceed(self) -> bool:
        state = self._state
        return (
            not state.is_generating
            and next_phase_of(state.phase) is not None
            and state.is_approved(state.phase)
        )

    def next_phase(self) -> WorkflowPhase | None:
        return next_phase_of(self._state.phase)

    def previous_phase(self) -> WorkflowPhase | None:
        return previous_phase_of(self._state.phase)

    def _move_to(self, target: WorkflowPhase, **changes: Any) -> None:
        previous = self._state.phase
        self._update(
            WorkflowEvent(event_type=WorkflowEventType.PHASE_CHANGED, phase=target, previous_phase=previous),
            phase=target,
            **changes,
        )

    def proceed(self) -> None:
        """Move to the next phase. Never generates.

        Raises:
            PhaseTransitionError: If the current phase is unapproved, there is no
                next phase, or a generation is running.

        """
        if not self.can_proceed():
            raise PhaseTransitionError(f"Cannot proceed from {self._state.phase.value}")
        self._move_to(next_phase_of(self._state.phase))

    def approve_and_proceed(self) -> asyncio.Task | None:
        """Approve and transition in one write, then start generating the new phase.

        Returns the generation task, or None when the new phase is complete or
        its preconditions failed (the failure is in state.error).

        Raises:
            GenerationInProgressError: If a generation is already running.
            PhaseTransitionError: If there is no next phase.

        """
        self._ensure_idle()
        state = self._state
        target = next_phase_of(state.phase)
        if target is None:
            raise PhaseTransitionError("Workflow is already complete")
        self._move_to(target, approvals=state.approvals.model_copy(update={state.phase.value: True}))
        if target == WorkflowPhase.COMPLETE:
            return None

        try:
            system, user = self._prompts_for(target, self._state)
            self._check_generation_preconditions(system, user)
        except PreconditionError as e:
            self._record_error(str(e), target)
            return None

        token, started = self._begin_generation(target, self._state)
        task = asyncio.create_task(self._execute_generation(token, started, target, system, user))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def go_to_previous_phase(self) -> None:
        """View the previous phase. Approvals are untouched."""
        self._ensure_idle()
        previous = previous_phase_of(self._state.phase)
        if previous is None:
            raise PhaseTransitionError("Already at the first phase")
        self._move_to(previous)

    def is_complete(self) -> bool:
        approvals = self._state.approvals
        return approvals.requirements and approvals.design and approvals.tasks

    # --- inputs and content ---

    def set_feature_name(self, name: str) -> None:
        self._update(feature_name=name)

    def set_description(self, description: str) -> None:
        self._update(description=description)

    def add_context_file(self, file: ContextFile) -> None:
        """Attach a file; an existing file with the same id is replaced in place."""
        files = list(self._state.context)
        for i, existing in enumerate(files):
            if existing.id == file.id:
                files[i] = file
                break
        else:
            files.append(file)
        self._update(context=files)

    def remove_context_file(self, file_id: str) -> None:
        self._update(context=[f for f in self._state.context if f.id != file_id])

    def clear_context(self) -> None:
        self._update(context=[])

    def update_phase_content(self, phase: WorkflowPhase, content: str) -> None:
        """Replace a phase's content by hand (manual edits)."""
        if phase == WorkflowPhase.COMPLETE:
            raise PhaseTransitionError("The complete phase has no content")
        self._update(**{phase.value: content})

    def get_phase_content(self, phase: WorkflowPhase) -> str:
        return self._state.content_for(phase)

    def set_error(self, message: str) -> None:
        self._record_error(message)

    def clear_error(self) -> None:
        self._update(error=None)

    # --- export, import, reset ---

    def export_data(self) -> dict:
        """Versioned snapshot of state and refinement history."""
        return {
            "state": self._state.model_dump(mode="json"),
            "refinement_history": [h.model_dump(mode="json") for h in self.refinement_history],
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "version": EXPORT_VERSION,
        }

    def import_data(self, data: Any) -> bool:
        """Replace state (and history) from an export. Returns False on invalid data."""
        self._ensure_idle()
        if not isinstance(data, dict) or not isinstance(data.get("state"), dict):
            return False
        try:
            state = WorkflowState.model_validate(data["state"])
            history = [RefinementHistory.model_validate(h) for h in data.get("refinement_history") or []]
        except ValidationError as e:
            logger.warning("Rejected workflow import: %s", e.errors()[:3])
            return False
        self._generation_seq += 1
        self._history = {h.phase: h for h in history}
        self._commit(state.model_copy(update={"is_generating": False}))
        return True

    def reset(self) -> None:
        """Back to an empty requirements phase; drops the durable record and in-flight results."""
        self._generation_seq += 1
        self._history.clear()
        if self._persister is not None:
            self._persister.clear()
        self._state = WorkflowState()
        self._emit(WorkflowEvent(event_type=WorkflowEventType.RESET, phase=WorkflowPhase.REQUIREMENTS))
        self._emit(WorkflowEvent(event_type=WorkflowEventType.STATE, phase=WorkflowPhase.REQUIREMENTS))
