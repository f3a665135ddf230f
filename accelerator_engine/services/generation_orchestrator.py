"""GenerationOrchestrator: idempotent, retryable, confirmable AI generation tasks.

Protocol per execution:
1. Fresh request_id; autosave suspended for the whole call
2. Sanitized payload from whitelisted session keys and upstream slices
3. Staleness check for regenerations (hash mismatch => force=True)
4. Client call; transport errors classify as network, success=false as upstream
5. Mandatory structural validation; violations classify as invalid_shape
6. Validated results are committed through the controller's commit callback,
   which holds the session write guard and updates the autosave snapshot
   (a session completed in the meantime refuses the commit: session_closed)
A failure never mutates session_data; the task keeps the error and can be retried.
"""

import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from pydantic import ValidationError

from accelerator_engine.core.config import Settings, get_settings
from accelerator_engine.core.exceptions import (
    ConfirmationRequiredError,
    GenerationInFlightError,
    GenerationThrottledError,
    InvalidResultShapeError,
    InvalidTransitionError,
    RefinementLimitReachedError,
    SessionClosedError,
    TransportError,
)
from accelerator_engine.domain.hashing import build_source_snapshot, compute_source_hash
from accelerator_engine.domain.rows import RowStatus, renumber
from accelerator_engine.domain.session_data import has_content
from accelerator_engine.generation.client import GenerationClient, GenerationRequest
from accelerator_engine.generation.contracts import GenerationTemplate, TemplateKind, validate_result
from accelerator_engine.generation.payload import build_payload, hash_inputs
from accelerator_engine.schemas.artifacts import normalize_slice
from accelerator_engine.services.autosave import AutosaveScheduler, SuspendReason

logger = structlog.get_logger(__name__)


class TaskPhase(StrEnum):
    REQUESTED = "requested"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    IN_FLIGHT = "in_flight"
    VALIDATING = "validating"
    COMMITTED = "committed"
    FAILED = "failed"
    DECLINED = "declined"


class GenerationState(StrEnum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class FailureClassification(StrEnum):
    NETWORK = "network"
    UPSTREAM = "upstream"
    INVALID_SHAPE = "invalid_shape"
    SESSION_CLOSED = "session_closed"


@dataclass
class GenerationFailure:
    """Correlated error surfaced inline next to the task."""

    request_id: str
    message: str
    classification: FailureClassification
    code: str | None = None


@dataclass
class GenerationTask:
    """One generation (or regeneration) of a template's target slice."""

    template_id: str
    session_id: str
    regeneration: bool
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: TaskPhase = TaskPhase.REQUESTED
    request_ids: list[str] = field(default_factory=list)
    failure: GenerationFailure | None = None
    dialog_open: bool = False
    stale: bool = False
    force: bool = False
    source_hash: str | None = None
    extra_inputs: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def request_id(self) -> str | None:
        return self.request_ids[-1] if self.request_ids else None

    @property
    def attempts(self) -> int:
        return len(self.request_ids)


class GenerationOrchestrator:
    """Runs generation tasks for one session.

    Only open tasks (awaiting confirmation or failed) are kept for lookup;
    committed and declined tasks are dropped, and at most MAX_OPEN_TASKS are kept.
    """

    MAX_OPEN_TASKS = 20

    def __init__(
        self,
        client: GenerationClient,
        *,
        session_id: str,
        snapshot: Callable[[], dict[str, Any]],
        load_upstream: Callable[[tuple[int, ...]], Awaitable[dict[int, dict[str, Any]]]],
        commit: Callable[[dict[str, Any]], Awaitable[None]],
        autosave: AutosaveScheduler,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator.

        Args:
            client: GenerationClient implementation (fake in tests, HTTP in production)
            session_id: Session identifier (log context)
            snapshot: Returns the live in-memory session_data
            load_upstream: Loads {accelerator_number: session_data} for upstream accelerators
            commit: Persists validated fields silently under the session write guard
            autosave: The session's scheduler, suspended while a call is in flight
            settings: Settings override (payload limit, cooldown)
            clock: Monotonic clock for the cooldown
        """
        self.client = client
        self.session_id = session_id
        self._snapshot = snapshot
        self._load_upstream = load_upstream
        self._commit = commit
        self._autosave = autosave
        self.settings = settings or get_settings()
        self._clock = clock

        self.state = GenerationState.IDLE
        self.tasks: dict[str, GenerationTask] = {}
        self._last_committed_at: dict[str, float] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        template: GenerationTemplate,
        *,
        confirmed: bool = False,
        extra_inputs: Mapping[str, Any] | None = None,
    ) -> GenerationTask:
        """Create a task and run it unless it needs confirmation first.

        Raises:
            GenerationInFlightError: If another generation is running for this session
            GenerationThrottledError: If the template ran inside the cooldown window
            RefinementLimitReachedError: If a refinement template has no runs left
        """
        self._check_in_flight()
        self._check_cooldown(template)
        self._check_refinement_cap(template)

        data = self._snapshot()
        regeneration = has_content(data.get(template.target_slice))
        task = GenerationTask(
            template_id=template.template_id,
            session_id=self.session_id,
            regeneration=regeneration,
            extra_inputs=dict(extra_inputs or {}),
        )
        self._track(task)

        if regeneration and template.confirm_regeneration and not confirmed:
            task.phase = TaskPhase.AWAITING_CONFIRMATION
            logger.info(
                "generation_awaiting_confirmation",
                session_id=self.session_id,
                task_id=task.id,
                template_id=template.template_id,
            )
            return task

        task.dialog_open = regeneration and template.confirm_regeneration
        return await self._execute(task, template)

    async def confirm(self, task: GenerationTask, template: GenerationTemplate) -> GenerationTask:
        """Run a regeneration the user confirmed. The dialog stays open until success."""
        if task.phase != TaskPhase.AWAITING_CONFIRMATION:
            raise InvalidTransitionError("confirm generation", f"task is {task.phase.value}")
        self._check_in_flight()
        self._check_refinement_cap(template)
        task.dialog_open = True
        return await self._execute(task, template)

    def decline(self, task: GenerationTask) -> GenerationTask:
        """Close the confirmation dialog without calling the client."""
        if task.phase not in (TaskPhase.AWAITING_CONFIRMATION, TaskPhase.FAILED):
            raise InvalidTransitionError("decline generation", f"task is {task.phase.value}")
        task.phase = TaskPhase.DECLINED
        task.dialog_open = False
        self.tasks.pop(task.id, None)
        logger.info("generation_declined", session_id=self.session_id, task_id=task.id)
        return task

    async def retry(self, task: GenerationTask, template: GenerationTemplate) -> GenerationTask:
        """Re-run a failed task with a fresh request_id."""
        if task.phase != TaskPhase.FAILED:
            raise InvalidTransitionError("retry generation", f"task is {task.phase.value}")
        self._check_in_flight()
        self._check_refinement_cap(template)
        return await self._execute(task, template)

    def _track(self, task: GenerationTask) -> None:
        self.tasks[task.id] = task
        while len(self.tasks) > self.MAX_OPEN_TASKS:
            oldest = next(iter(self.tasks))
            self.tasks.pop(oldest)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check_in_flight(self) -> None:
        if self.state == GenerationState.IN_FLIGHT:
            logger.error("generation_concurrency_conflict", session_id=self.session_id)
            raise GenerationInFlightError(self.session_id)

    def _check_cooldown(self, template: GenerationTemplate) -> None:
        last = self._last_committed_at.get(template.template_id)
        cooldown = self.settings.generation_cooldown_seconds
        if last is None or cooldown <= 0:
            return
        remaining = cooldown - (self._clock() - last)
        if remaining > 0:
            raise GenerationThrottledError(template.template_id, remaining)

    def _check_refinement_cap(self, template: GenerationTemplate) -> None:
        if template.kind != TemplateKind.REFINEMENT:
            return
        used = (self._snapshot().get("refinements") or {}).get(template.template_id, 0)
        if used >= (template.max_runs or 0):
            raise RefinementLimitReachedError(template.template_id, template.max_runs or 0)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _stored_hash(self, template: GenerationTemplate) -> str | None:
        meta = (self._snapshot().get("generation_meta") or {}).get(template.target_slice) or {}
        return meta.get("source_hash")

    def _fail(
        self,
        task: GenerationTask,
        template: GenerationTemplate,
        message: str,
        classification: FailureClassification,
        code: str | None = None,
    ) -> GenerationTask:
        task.phase = TaskPhase.FAILED
        task.failure = GenerationFailure(
            request_id=task.request_id,
            message=message,
            classification=classification,
            code=code,
        )
        logger.warning(
            "generation_failed",
            session_id=self.session_id,
            task_id=task.id,
            template_id=template.template_id,
            request_id=task.request_id,
            classification=classification.value,
            code=code,
            error=message,
        )
        return task

    async def _execute(self, task: GenerationTask, template: GenerationTemplate) -> GenerationTask:
        if task.regeneration and template.confirm_regeneration and not task.dialog_open:
            raise ConfirmationRequiredError(f"Regenerating '{template.template_id}' needs confirmation")

        self._check_in_flight()
        self.state = GenerationState.IN_FLIGHT
        request_id = str(uuid.uuid4())
        task.request_ids.append(request_id)
        task.phase = TaskPhase.IN_FLIGHT
        task.failure = None
        self._autosave.suspend(SuspendReason.GENERATION)

        try:
            try:
                upstream = await self._load_upstream(template.upstream_numbers)
            except TransportError as e:
                return self._fail(task, template, str(e), FailureClassification.NETWORK)

            data = self._snapshot()
            sanitized = build_payload(
                template,
                data,
                upstream,
                max_text_chars=self.settings.payload_max_text_chars,
                extra_inputs=task.extra_inputs,
            )
            inputs = hash_inputs(template, sanitized.payload)
            task.source_hash = compute_source_hash(inputs)

            if task.regeneration:
                stored_hash = self._stored_hash(template)
                task.stale = stored_hash is None or stored_hash != task.source_hash
                task.force = task.stale

            previous_row_ids = []
            if task.regeneration and template.contract.is_array:
                previous_row_ids = [
                    str(row.get("id") or row.get("index"))
                    for row in data.get(template.target_slice) or []
                    if isinstance(row, dict)
                ]

            request = GenerationRequest(
                request_id=request_id,
                template_id=template.template_id,
                payload=sanitized.payload,
                force=task.force,
                source_hash=task.source_hash,
                previous_row_ids=previous_row_ids,
            )
            logger.info(
                "generation_request",
                session_id=self.session_id,
                task_id=task.id,
                template_id=template.template_id,
                function_name=template.function_name,
                request_id=request_id,
                attempt=task.attempts,
                regeneration=task.regeneration,
                force=task.force,
                stale=task.stale,
                payload_bytes=sanitized.payload_bytes,
                truncated_fields=sanitized.truncated_fields,
            )

            try:
                envelope = await self.client.invoke(template.function_name, request)
            except TransportError as e:
                return self._fail(task, template, str(e), FailureClassification.NETWORK)

            if not envelope.success:
                return self._fail(
                    task,
                    template,
                    envelope.error or "Generation service rejected the request",
                    FailureClassification.UPSTREAM,
                    code=envelope.code,
                )

            task.phase = TaskPhase.VALIDATING
            try:
                value = validate_result(template, envelope.result, regeneration=task.regeneration)
                fields = self._commit_fields(task, template, value, inputs, sanitized.payload_bytes)
            except InvalidResultShapeError as e:
                return self._fail(task, template, str(e), FailureClassification.INVALID_SHAPE)
            except ValidationError as e:
                return self._fail(
                    task,
                    template,
                    f"Result does not match the '{template.target_slice}' schema: {e.error_count()} error(s)",
                    FailureClassification.INVALID_SHAPE,
                )

            try:
                await self._commit(fields)
            except TransportError as e:
                return self._fail(task, template, str(e), FailureClassification.NETWORK)
            except SessionClosedError as e:
                return self._fail(task, template, str(e), FailureClassification.SESSION_CLOSED)

            task.phase = TaskPhase.COMMITTED
            task.dialog_open = False
            self.tasks.pop(task.id, None)
            self._last_committed_at[template.template_id] = self._clock()
            logger.info(
                "generation_committed",
                session_id=self.session_id,
                task_id=task.id,
                template_id=template.template_id,
                request_id=request_id,
                target_slice=template.target_slice,
            )
            return task
        finally:
            self.state = GenerationState.IDLE
            self._autosave.resume(SuspendReason.GENERATION)

    def _commit_fields(
        self,
        task: GenerationTask,
        template: GenerationTemplate,
        value: Any,
        inputs: dict[str, Any],
        payload_bytes: int,
    ) -> dict[str, Any]:
        """Build the top-level keys a validated result replaces."""
        data = self._snapshot()

        if template.contract.is_array:
            value = renumber(
                [
                    {**row, "status": RowStatus.DRAFT.value, "source_hash": task.source_hash}
                    for row in value
                ]
            )
            for row in value:
                row.pop("closed_at", None)

        fields: dict[str, Any] = {template.target_slice: normalize_slice(template.target_slice, value)}

        meta = dict(data.get("generation_meta") or {})
        meta[template.target_slice] = {
            "template_id": template.template_id,
            "request_id": task.request_id,
            "source_hash": task.source_hash,
            "source_snapshot": build_source_snapshot(inputs),
            "generated_at": datetime.now(UTC).isoformat(),
            "payload_bytes": payload_bytes,
        }
        fields["generation_meta"] = normalize_slice("generation_meta", meta)

        if template.kind == TemplateKind.REFINEMENT:
            refinements = dict(data.get("refinements") or {})
            refinements[template.template_id] = refinements.get(template.template_id, 0) + 1
            fields["refinements"] = refinements

        return fields
