"""Step definitions and step transition logic.

Pure domain logic with no external dependencies. Every function takes the
current StepState and the accelerator's step count K and returns a
TransitionResult; persisting the new state is the caller's job.
"""
from dataclasses import dataclass, replace
from enum import StrEnum


class SessionStatus(StrEnum):
    """Session lifecycle status, orthogonal to the current step."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"


class StepStatus(StrEnum):
    """Per-step display status derived from the current step."""

    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


@dataclass(frozen=True)
class StepDefinition:
    """One entry of an accelerator's linear step table."""

    number: int
    key: str
    title: str
    generates: tuple[str, ...] = ()  # template ids launched from this step
    required_keys: tuple[str, ...] = ()  # session_data keys that must be filled to leave the step


@dataclass(frozen=True)
class StepState:
    current_step: int
    highest_step: int
    status: SessionStatus = SessionStatus.IN_PROGRESS


@dataclass
class TransitionResult:
    """Result of a step transition attempt."""

    allowed: bool
    reason: str = ""
    new_state: StepState | None = None


def initial_state() -> StepState:
    return StepState(current_step=1, highest_step=1, status=SessionStatus.IN_PROGRESS)


def _blocked(state: StepState) -> TransitionResult | None:
    if state.status == SessionStatus.COMPLETED:
        return TransitionResult(False, "Session is completed; reopen it first")
    if state.status == SessionStatus.PAUSED:
        return TransitionResult(False, "Session is paused; resume it first")
    return None


def advance(state: StepState, total_steps: int) -> TransitionResult:
    """Move to the next step, saturating at the last step."""
    blocked = _blocked(state)
    if blocked:
        return blocked

    if state.current_step >= total_steps:
        return TransitionResult(False, "Already at the last step")

    target = min(state.current_step + 1, total_steps)
    return TransitionResult(
        True,
        new_state=replace(state, current_step=target, highest_step=max(state.highest_step, target)),
    )


def retreat(state: StepState, total_steps: int) -> TransitionResult:
    """Move to the previous step, saturating at step 1."""
    blocked = _blocked(state)
    if blocked:
        return blocked

    if state.current_step <= 1:
        return TransitionResult(False, "Already at the first step")

    target = max(min(state.current_step, total_steps + 1) - 1, 1)
    return TransitionResult(True, new_state=replace(state, current_step=target))


def jump_to(state: StepState, target: int, total_steps: int) -> TransitionResult:
    """Jump to any step already reached. Skipping ahead is rejected."""
    blocked = _blocked(state)
    if blocked:
        return blocked

    if target < 1 or target > total_steps:
        return TransitionResult(False, f"Step {target} is out of range 1..{total_steps}")

    if target > state.highest_step:
        return TransitionResult(False, f"Step {target} has not been reached yet")

    if target == state.current_step:
        return TransitionResult(False, "Already at this step")

    return TransitionResult(True, new_state=replace(state, current_step=target))


def complete(state: StepState, total_steps: int) -> TransitionResult:
    """Mark the session completed. Only allowed from the last step."""
    if state.status == SessionStatus.COMPLETED:
        return TransitionResult(False, "Session is already completed")

    if state.status == SessionStatus.PAUSED:
        return TransitionResult(False, "Session is paused; resume it first")

    if state.current_step != total_steps:
        return TransitionResult(False, f"Only the last step ({total_steps}) can complete the session")

    return TransitionResult(True, new_state=replace(state, status=SessionStatus.COMPLETED))


def reopen(state: StepState) -> TransitionResult:
    """Return a completed session to in_progress, keeping its step."""
    if state.status != SessionStatus.COMPLETED:
        return TransitionResult(False, "Only completed sessions can be reopened")

    return TransitionResult(True, new_state=replace(state, status=SessionStatus.IN_PROGRESS))


def pause(state: StepState) -> TransitionResult:
    if state.status != SessionStatus.IN_PROGRESS:
        return TransitionResult(False, f"Cannot pause a {state.status.value} session")
    return TransitionResult(True, new_state=replace(state, status=SessionStatus.PAUSED))


def resume(state: StepState) -> TransitionResult:
    if state.status != SessionStatus.PAUSED:
        return TransitionResult(False, "Session is not paused")
    return TransitionResult(True, new_state=replace(state, status=SessionStatus.IN_PROGRESS))


def step_statuses(state: StepState, total_steps: int) -> list[StepStatus]:
    """Derive completed/current/pending for steps 1..K.

    A completed session shows every step as completed.
    """
    if state.status == SessionStatus.COMPLETED:
        return [StepStatus.COMPLETED] * total_steps

    statuses = []
    for number in range(1, total_steps + 1):
        if number < state.current_step:
            statuses.append(StepStatus.COMPLETED)
        elif number == state.current_step:
            statuses.append(StepStatus.CURRENT)
        else:
            statuses.append(StepStatus.PENDING)
    return statuses
