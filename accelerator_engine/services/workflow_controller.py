"""WorkflowController: façade for one (user, accelerator) session.

Responsibilities:
- Load-or-create behind the prerequisite gate (fails closed on fetch errors)
- Step transitions, persisted immediately under the session write guard
- Local data mutations routed through the AutosaveScheduler
- Generation tasks routed through the GenerationOrchestrator
- Close / reopen (rows closed and back to draft, content preserved)
- Step, lifecycle and manual-save calls are rejected while a generation is in flight
- Shutdown: flush pending autosave and stop timers

The controller owns the single in-memory SessionRecord and is the only
component that talks to the SessionStore for it.
"""

import copy
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog

from accelerator_engine.core.config import Settings, get_settings
from accelerator_engine.core.exceptions import (
    AcceleratorEngineError,
    GenerationInFlightError,
    InvalidTransitionError,
    PrerequisiteNotMetError,
    SessionClosedError,
    TransportError,
    UnknownTemplateError,
    ValidationFailedError,
)
from accelerator_engine.core.locking import SessionWriteGuard
from accelerator_engine.core.logging import session_log_context
from accelerator_engine.domain import rows as row_ops
from accelerator_engine.domain import steps
from accelerator_engine.domain.catalog import (
    ACCELERATORS,
    AcceleratorDefinition,
    dependency_numbers,
    get_accelerator,
)
from accelerator_engine.domain.prerequisites import AccessDecision, can_access
from accelerator_engine.domain.progress import compute_accelerator_progress
from accelerator_engine.domain.session_data import deep_merge, has_content
from accelerator_engine.domain.steps import SessionStatus, StepState, TransitionResult
from accelerator_engine.generation.client import GenerationClient
from accelerator_engine.generation.contracts import TEMPLATES, GenerationTemplate, get_template
from accelerator_engine.schemas.sessions import SessionRecord, StepItem, StepView
from accelerator_engine.services.autosave import AutosaveScheduler, SuspendReason
from accelerator_engine.services.generation_orchestrator import (
    GenerationOrchestrator,
    GenerationState,
    GenerationTask,
)
from accelerator_engine.stores.base import SessionStore, SessionUpdate

logger = structlog.get_logger(__name__)

StepPredicate = Callable[[Mapping[str, Any]], bool]


def required_keys_predicate(keys: tuple[str, ...]) -> StepPredicate:
    """Default step predicate: every listed session_data key holds content."""

    def predicate(data: Mapping[str, Any]) -> bool:
        return all(has_content(data.get(key)) for key in keys)

    return predicate


class WorkflowController:
    """Façade over one accelerator session of one user."""

    def __init__(
        self,
        user_id: str,
        accelerator_number: int,
        store: SessionStore,
        client: GenerationClient,
        *,
        settings: Settings | None = None,
        catalog: dict[int, AcceleratorDefinition] | None = None,
        templates: dict[str, GenerationTemplate] | None = None,
    ):
        """Initialize the controller. Call load_or_create() before anything else.

        Args:
            user_id: Opaque user identifier
            accelerator_number: Accelerator to open
            store: SessionStore implementation
            client: GenerationClient implementation
            settings: Settings override (timers, limits)
            catalog: Accelerator catalog override
            templates: Template registry override
        """
        self.user_id = user_id
        self.catalog = ACCELERATORS if catalog is None else catalog
        self.accelerator = get_accelerator(accelerator_number, self.catalog)
        self.templates = TEMPLATES if templates is None else templates
        self.store = store
        self.client = client
        self.settings = settings or get_settings()

        self._record: SessionRecord | None = None
        self.guard: SessionWriteGuard | None = None
        self.autosave: AutosaveScheduler | None = None
        self.orchestrator: GenerationOrchestrator | None = None

    @classmethod
    async def open(
        cls,
        user_id: str,
        accelerator_number: int,
        store: SessionStore,
        client: GenerationClient,
        **kwargs,
    ) -> "WorkflowController":
        controller = cls(user_id, accelerator_number, store, client, **kwargs)
        await controller.load_or_create()
        return controller

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def accelerator_number(self) -> int:
        return self.accelerator.number

    @property
    def record(self) -> SessionRecord:
        if self._record is None:
            raise RuntimeError("Session not loaded. Call load_or_create() first.")
        return self._record

    @property
    def session_data(self) -> dict[str, Any]:
        return self.record.session_data

    @property
    def total_steps(self) -> int:
        return self.accelerator.total_steps

    def _log_context(self) -> dict:
        session_id = self._record.id if self._record is not None else None
        return session_log_context(self.user_id, self.accelerator_number, session_id)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def check_access(self) -> AccessDecision:
        """Resolve prerequisites, failing closed when they cannot be fetched."""
        numbers = dependency_numbers(self.accelerator, self.catalog)
        summaries = None
        if numbers:
            try:
                records = await self.store.list_for_user(self.user_id, numbers)
                summaries = {
                    r.accelerator_number: r.summary(self.catalog[r.accelerator_number].total_steps)
                    for r in records
                    if r.accelerator_number in self.catalog
                }
            except Exception as e:
                logger.warning(
                    "prerequisite_fetch_failed",
                    **self._log_context(),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return can_access(self.accelerator, summaries, self.catalog)

    async def load_or_create(self) -> SessionRecord:
        """Gate on prerequisites, then load the session or lazily create it.

        Raises:
            PrerequisiteNotMetError: If a prerequisite is missing or unfetchable
            TransportError: If the store is unreachable
        """
        decision = await self.check_access()
        if not decision.allowed:
            logger.info(
                "prerequisite_not_met",
                **self._log_context(),
                missing=decision.missing,
                reason=decision.reason,
            )
            raise PrerequisiteNotMetError(self.accelerator_number, decision.missing, decision.reason)

        record = await self.store.get(self.user_id, self.accelerator_number)
        if record is None:
            record = await self.store.create(self.user_id, self.accelerator_number)

        self._attach(record)
        logger.info(
            "session_loaded",
            **self._log_context(),
            current_step=record.current_step,
            status=record.status.value,
        )
        return record

    def _attach(self, record: SessionRecord) -> None:
        self._record = record
        self.guard = SessionWriteGuard(record.id)
        self.autosave = AutosaveScheduler(
            record.id,
            snapshot=lambda: self.record.session_data,
            write=self._write_data,
            guard=self.guard,
            debounce_seconds=self.settings.autosave_debounce_seconds,
            throttle_seconds=self.settings.autosave_throttle_seconds,
            periodic_flush_seconds=self.settings.autosave_periodic_flush_seconds,
            failure_alert_threshold=self.settings.autosave_failure_alert_threshold,
        )
        if record.status == SessionStatus.COMPLETED:
            self.autosave.suspend(SuspendReason.ROWS_CLOSED)
        self.autosave.start()
        self.orchestrator = GenerationOrchestrator(
            self.client,
            session_id=record.id,
            snapshot=lambda: self.record.session_data,
            load_upstream=self._load_upstream,
            commit=self._commit_generation,
            autosave=self.autosave,
            settings=self.settings,
        )

    # ------------------------------------------------------------------
    # Store writes (callers hold the guard)
    # ------------------------------------------------------------------

    async def _store_update(self, changes: SessionUpdate) -> SessionRecord:
        try:
            return await self.store.update(self.record.id, changes)
        except AcceleratorEngineError:
            raise
        except Exception as e:
            raise TransportError(f"Session store write failed: {e}") from e

    async def _write_data(self, fields: dict[str, Any]) -> None:
        updated = await self._store_update(SessionUpdate(session_data=fields))
        self.record.updated_at = updated.updated_at

    async def _commit_generation(self, fields: dict[str, Any]) -> None:
        """Silent immediate save of a validated generation; wins over pending autosave."""
        self.autosave.cancel_pending()
        async with self.guard.hold("generation_commit"):
            if self.record.status == SessionStatus.COMPLETED:
                raise SessionClosedError(
                    f"Accelerator {self.accelerator_number} was completed while generating; result discarded"
                )
            updated = await self._store_update(SessionUpdate(session_data=fields))
            self.record.session_data.update(copy.deepcopy(fields))
            self.record.updated_at = updated.updated_at
            self.autosave.mark_confirmed(fields)

    async def _apply_state(
        self, new_state: StepState, data_fields: dict[str, Any] | None = None
    ) -> SessionRecord:
        """Persist a step/status change; in-memory state changes only after the write succeeds."""
        changes = SessionUpdate(
            current_step=new_state.current_step,
            highest_step=new_state.highest_step,
            status=new_state.status,
            session_data=data_fields or {},
        )
        async with self.guard.hold("step"):
            try:
                updated = await self._store_update(changes)
            except TransportError:
                logger.warning(
                    "step_transition_not_persisted",
                    **self._log_context(),
                    current_step=self.record.current_step,
                    target_step=new_state.current_step,
                )
                raise

            self.record.current_step = new_state.current_step
            self.record.highest_step = new_state.highest_step
            self.record.status = new_state.status
            self.record.updated_at = updated.updated_at
            if data_fields:
                self.record.session_data.update(copy.deepcopy(data_fields))
                self.autosave.mark_confirmed(data_fields)
        return self.record

    async def _load_upstream(self, numbers: tuple[int, ...]) -> dict[int, dict[str, Any]]:
        if not numbers:
            return {}
        records = await self.store.list_for_user(self.user_id, numbers)
        return {r.accelerator_number: r.session_data for r in records}

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _ensure_no_generation(self, action: str) -> None:
        if self.orchestrator is not None and self.orchestrator.state == GenerationState.IN_FLIGHT:
            logger.warning("rejected_during_generation", **self._log_context(), action=action)
            raise GenerationInFlightError(self.record.id)

    def get_step(self) -> StepView:
        state = self.record.step_state
        current = min(state.current_step, self.total_steps)
        definition = self.accelerator.step(current)
        statuses = steps.step_statuses(state, self.total_steps)
        return StepView(
            accelerator_number=self.accelerator_number,
            current_step=state.current_step,
            highest_step=state.highest_step,
            total_steps=self.total_steps,
            status=state.status,
            step_key=definition.key,
            step_title=definition.title,
            progress=compute_accelerator_progress(self.record.summary(self.total_steps)),
            steps=[
                StepItem(number=s.number, key=s.key, title=s.title, status=status)
                for s, status in zip(self.accelerator.steps, statuses)
            ],
        )

    def _current_predicate(self) -> StepPredicate:
        current = min(self.record.current_step, self.total_steps)
        return required_keys_predicate(self.accelerator.step(current).required_keys)

    async def advance_step(self, validate: StepPredicate | None = None) -> TransitionResult:
        """Advance one step. A failing predicate is a no-op, not an error.

        Args:
            validate: Step predicate over session_data; defaults to the step's required keys
        """
        self._ensure_no_generation("advance")
        predicate = validate or self._current_predicate()
        if not predicate(self.session_data):
            logger.info("step_validation_failed", **self._log_context(), step=self.record.current_step)
            return TransitionResult(False, "Step validation failed")

        result = steps.advance(self.record.step_state, self.total_steps)
        if result.allowed:
            await self._apply_state(result.new_state)
            logger.info("step_advanced", **self._log_context(), step=result.new_state.current_step)
        return result

    async def retreat_step(self) -> TransitionResult:
        self._ensure_no_generation("retreat")
        result = steps.retreat(self.record.step_state, self.total_steps)
        if result.allowed:
            await self._apply_state(result.new_state)
        return result

    async def jump_to_step(self, target: int) -> TransitionResult:
        self._ensure_no_generation("jump")
        result = steps.jump_to(self.record.step_state, target, self.total_steps)
        if result.allowed:
            await self._apply_state(result.new_state)
        return result

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _ensure_editable(self) -> None:
        if self.record.status == SessionStatus.COMPLETED:
            raise SessionClosedError(
                f"Accelerator {self.accelerator_number} is completed; reopen it to edit"
            )

    def update_session_data(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Deep-merge a patch into the in-memory data and schedule an autosave."""
        self._ensure_editable()
        self.record.session_data = deep_merge(self.record.session_data, patch)
        self.autosave.notify()
        return self.record.session_data

    def _rows(self, key: str) -> list[dict[str, Any]]:
        rows = self.session_data.get(key) or []
        if not isinstance(rows, list):
            raise ValueError(f"session_data['{key}'] is not a row array")
        return rows

    def add_row(self, key: str, row: Mapping[str, Any], position: int | None = None) -> list[dict[str, Any]]:
        rows = row_ops.add_row(self._rows(key), dict(row), position)
        self.update_session_data({key: rows})
        return rows

    def remove_row(self, key: str, index: int) -> list[dict[str, Any]]:
        rows = row_ops.remove_row(self._rows(key), index)
        self.update_session_data({key: rows})
        return rows

    def move_row(self, key: str, from_index: int, to_index: int) -> list[dict[str, Any]]:
        rows = row_ops.move_row(self._rows(key), from_index, to_index)
        self.update_session_data({key: rows})
        return rows

    async def save_now(self) -> bool:
        """Manual save: immediate write that raises on failure, unlike autosave."""
        self._ensure_no_generation("save")
        self.autosave.suspend(SuspendReason.MANUAL_SAVE)
        try:
            return await self.autosave.flush(raise_errors=True)
        finally:
            self.autosave.resume(SuspendReason.MANUAL_SAVE)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _template(self, template_id: str) -> GenerationTemplate:
        template = get_template(template_id, self.templates)
        if template.accelerator_number != self.accelerator_number:
            raise UnknownTemplateError(template_id, self.accelerator_number)
        return template

    async def request_generation(
        self,
        template_id: str,
        *,
        confirmed: bool = False,
        extra_inputs: Mapping[str, Any] | None = None,
    ) -> GenerationTask:
        self._ensure_editable()
        return await self.orchestrator.request(
            self._template(template_id), confirmed=confirmed, extra_inputs=extra_inputs
        )

    def get_task(self, task_id: str) -> GenerationTask:
        try:
            return self.orchestrator.tasks[task_id]
        except KeyError:
            raise InvalidTransitionError("find generation task", f"unknown task {task_id}") from None

    async def confirm_generation(self, task: GenerationTask) -> GenerationTask:
        self._ensure_editable()
        return await self.orchestrator.confirm(task, self._template(task.template_id))

    def decline_generation(self, task: GenerationTask) -> GenerationTask:
        return self.orchestrator.decline(task)

    async def retry_generation(self, task: GenerationTask) -> GenerationTask:
        self._ensure_editable()
        return await self.orchestrator.retry(task, self._template(task.template_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _row_fields(self, status: row_ops.RowStatus) -> dict[str, Any]:
        closed_at = datetime.now(UTC).isoformat() if status == row_ops.RowStatus.CLOSED else None
        fields = {}
        for key in self.accelerator.row_slices:
            rows = self.session_data.get(key)
            if isinstance(rows, list) and rows:
                fields[key] = row_ops.set_status(rows, status, closed_at)
        return fields

    async def close(self, validate: StepPredicate | None = None) -> SessionRecord:
        """Complete the session from its last step and close every row.

        Raises:
            ValidationFailedError: If the predicate rejects the current data
            InvalidTransitionError: If the session is not at its last step or already closed
            GenerationInFlightError: If a generation is running for this session
        """
        self._ensure_no_generation("close")
        predicate = validate or self._current_predicate()
        if not predicate(self.session_data):
            raise ValidationFailedError(
                f"Accelerator {self.accelerator_number} step {self.record.current_step} is incomplete"
            )

        result = steps.complete(self.record.step_state, self.total_steps)
        if not result.allowed:
            raise InvalidTransitionError("close", result.reason)

        # Unsaved edits go out first so closing never loses content
        await self.autosave.flush(raise_errors=True)
        await self._apply_state(result.new_state, self._row_fields(row_ops.RowStatus.CLOSED))
        self.autosave.suspend(SuspendReason.ROWS_CLOSED)
        logger.info("session_closed", **self._log_context())
        return self.record

    async def reopen(self) -> SessionRecord:
        """Return to in_progress with rows back to draft. Content is preserved."""
        self._ensure_no_generation("reopen")
        result = steps.reopen(self.record.step_state)
        if not result.allowed:
            raise InvalidTransitionError("reopen", result.reason)

        await self._apply_state(result.new_state, self._row_fields(row_ops.RowStatus.DRAFT))
        self.autosave.resume(SuspendReason.ROWS_CLOSED)
        logger.info("session_reopened", **self._log_context())
        return self.record

    async def pause(self) -> SessionRecord:
        self._ensure_no_generation("pause")
        result = steps.pause(self.record.step_state)
        if not result.allowed:
            raise InvalidTransitionError("pause", result.reason)
        return await self._apply_state(result.new_state)

    async def resume(self) -> SessionRecord:
        self._ensure_no_generation("resume")
        result = steps.resume(self.record.step_state)
        if not result.allowed:
            raise InvalidTransitionError("resume", result.reason)
        return await self._apply_state(result.new_state)

    async def shutdown(self, flush: bool = True) -> None:
        """Stop timers and, unless flush is False, write pending autosave first."""
        if self.autosave is not None:
            await self.autosave.close(flush=flush)
        logger.info("controller_shutdown", **self._log_context())
