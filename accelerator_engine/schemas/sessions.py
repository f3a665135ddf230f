"""Session Pydantic schemas: the persisted record and the views built from it."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from accelerator_engine.domain.progress import SessionSummary
from accelerator_engine.domain.steps import SessionStatus, StepState, StepStatus


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionRecord(BaseModel):
    """One accelerator session for one user."""

    id: str
    user_id: str
    accelerator_number: int
    current_step: int = 1
    highest_step: int = 1
    status: SessionStatus = SessionStatus.IN_PROGRESS
    session_data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def step_state(self) -> StepState:
        return StepState(
            current_step=self.current_step,
            highest_step=max(self.highest_step, self.current_step),
            status=self.status,
        )

    def summary(self, total_steps: int) -> SessionSummary:
        return SessionSummary(
            accelerator_number=self.accelerator_number,
            status=self.status,
            current_step=self.current_step,
            total_steps=total_steps,
        )


class StepItem(BaseModel):
    number: int
    key: str
    title: str
    status: StepStatus


class StepView(BaseModel):
    """Current step plus the per-step status list a stepper renders."""

    accelerator_number: int
    current_step: int
    highest_step: int
    total_steps: int
    status: SessionStatus
    step_key: str
    step_title: str
    progress: int
    steps: list[StepItem]


class AcceleratorStatusView(BaseModel):
    number: int
    key: str
    title: str
    group: str
    status: SessionStatus | None = None  # None = never opened
    current_step: int = 0
    total_steps: int
    progress: int = 0
    accessible: bool
    missing: list[int] = Field(default_factory=list)


class AcceleratorOverview(BaseModel):
    """All accelerators of one user with group and overall progress."""

    accelerators: list[AcceleratorStatusView]
    groups: dict[str, int]
    completed_by_group: dict[str, int]
    overall: int
