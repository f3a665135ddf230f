"""Accelerator API routes: session, steps, data, lifecycle and generation endpoints.

Engine errors propagate to the exception handler registered in main.py, which
maps them to status codes.
"""

from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from accelerator_engine.domain.steps import TransitionResult
from accelerator_engine.schemas.sessions import AcceleratorOverview, SessionRecord, StepView
from accelerator_engine.services.generation_orchestrator import GenerationTask
from accelerator_engine.services.overview import AcceleratorOverviewService
from accelerator_engine.services.registry import ControllerRegistry
from accelerator_engine.services.workflow_controller import WorkflowController

router = APIRouter()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class JumpRequest(BaseModel):
    step: int = Field(..., ge=1)


class DataPatchRequest(BaseModel):
    patch: dict[str, Any]


class GenerationRequestBody(BaseModel):
    template_id: str
    confirmed: bool = False
    extra_inputs: dict[str, Any] = Field(default_factory=dict)


class TransitionResponse(BaseModel):
    allowed: bool
    reason: str = ""
    step: StepView


class SaveResponse(BaseModel):
    written: bool
    autosave_failures: int


class GenerationFailureResponse(BaseModel):
    request_id: str
    message: str
    classification: str
    code: str | None = None


class GenerationTaskResponse(BaseModel):
    id: str
    template_id: str
    phase: str
    regeneration: bool
    dialog_open: bool
    stale: bool
    force: bool
    request_id: str | None = None
    attempts: int
    failure: GenerationFailureResponse | None = None

    @classmethod
    def from_task(cls, task: GenerationTask) -> "GenerationTaskResponse":
        failure = None
        if task.failure is not None:
            failure = GenerationFailureResponse(
                request_id=task.failure.request_id,
                message=task.failure.message,
                classification=task.failure.classification.value,
                code=task.failure.code,
            )
        return cls(
            id=task.id,
            template_id=task.template_id,
            phase=task.phase.value,
            regeneration=task.regeneration,
            dialog_open=task.dialog_open,
            stale=task.stale,
            force=task.force,
            request_id=task.request_id,
            attempts=task.attempts,
            failure=failure,
        )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    """Opaque user id supplied by the auth layer in front of the engine."""
    return x_user_id


def get_registry(request: Request) -> ControllerRegistry:
    """Dependency that provides the app-wide ControllerRegistry (set in lifespan)."""
    return request.app.state.registry


async def get_controller(
    number: int,
    user_id: str = Depends(get_user_id),
    registry: ControllerRegistry = Depends(get_registry),
) -> WorkflowController:
    return await registry.get(user_id, number)


def _transition(result: TransitionResult, controller: WorkflowController) -> TransitionResponse:
    return TransitionResponse(allowed=result.allowed, reason=result.reason, step=controller.get_step())


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("", response_model=AcceleratorOverview)
async def get_overview(
    user_id: str = Depends(get_user_id),
    registry: ControllerRegistry = Depends(get_registry),
):
    """Status, progress and access state of every accelerator for the user."""
    return await AcceleratorOverviewService(registry.store).get_overview(user_id)


@router.post("/{number}/session", response_model=SessionRecord)
async def open_session(controller: WorkflowController = Depends(get_controller)):
    """Load or lazily create the session (403 while prerequisites are missing)."""
    return controller.record


@router.get("/{number}/step", response_model=StepView)
async def get_step(controller: WorkflowController = Depends(get_controller)):
    return controller.get_step()


@router.post("/{number}/step/advance", response_model=TransitionResponse)
async def advance_step(controller: WorkflowController = Depends(get_controller)):
    """Advance using the current step's required keys as the predicate."""
    return _transition(await controller.advance_step(), controller)


@router.post("/{number}/step/retreat", response_model=TransitionResponse)
async def retreat_step(controller: WorkflowController = Depends(get_controller)):
    return _transition(await controller.retreat_step(), controller)


@router.post("/{number}/step/jump", response_model=TransitionResponse)
async def jump_to_step(body: JumpRequest, controller: WorkflowController = Depends(get_controller)):
    return _transition(await controller.jump_to_step(body.step), controller)


@router.patch("/{number}/data")
async def patch_data(body: DataPatchRequest, controller: WorkflowController = Depends(get_controller)):
    """Merge a patch into the session data; persisted by autosave."""
    return {"session_data": controller.update_session_data(body.patch)}


@router.post("/{number}/save", response_model=SaveResponse)
async def save_now(controller: WorkflowController = Depends(get_controller)):
    written = await controller.save_now()
    return SaveResponse(written=written, autosave_failures=controller.autosave.consecutive_failures)


@router.post("/{number}/close", response_model=SessionRecord)
async def close_session(controller: WorkflowController = Depends(get_controller)):
    return await controller.close()


@router.post("/{number}/reopen", response_model=SessionRecord)
async def reopen_session(controller: WorkflowController = Depends(get_controller)):
    return await controller.reopen()


@router.post("/{number}/generations", response_model=GenerationTaskResponse)
async def request_generation(
    body: GenerationRequestBody, controller: WorkflowController = Depends(get_controller)
):
    """Start a generation. Regenerations without confirmed=true wait for /confirm."""
    task = await controller.request_generation(
        body.template_id, confirmed=body.confirmed, extra_inputs=body.extra_inputs
    )
    return GenerationTaskResponse.from_task(task)


@router.post("/{number}/generations/{task_id}/confirm", response_model=GenerationTaskResponse)
async def confirm_generation(task_id: str, controller: WorkflowController = Depends(get_controller)):
    task = await controller.confirm_generation(controller.get_task(task_id))
    return GenerationTaskResponse.from_task(task)


@router.post("/{number}/generations/{task_id}/decline", response_model=GenerationTaskResponse)
async def decline_generation(task_id: str, controller: WorkflowController = Depends(get_controller)):
    task = controller.decline_generation(controller.get_task(task_id))
    return GenerationTaskResponse.from_task(task)


@router.post("/{number}/generations/{task_id}/retry", response_model=GenerationTaskResponse)
async def retry_generation(task_id: str, controller: WorkflowController = Depends(get_controller)):
    task = await controller.retry_generation(controller.get_task(task_id))
    return GenerationTaskResponse.from_task(task)


@router.post("/{number}/pause", response_model=SessionRecord)
async def pause_session(controller: WorkflowController = Depends(get_controller)):
    """Pause step transitions; data edits are still accepted."""
    return await controller.pause()


@router.post("/{number}/resume", response_model=SessionRecord)
async def resume_session(controller: WorkflowController = Depends(get_controller)):
    return await controller.resume()
