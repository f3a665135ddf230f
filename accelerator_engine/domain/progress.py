"""Deterministic progress computation functions.

Pure functions with no external dependencies.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from accelerator_engine.domain.steps import SessionStatus


@dataclass(frozen=True)
class SessionSummary:
    """The slice of a session the prerequisite and progress rules need."""

    accelerator_number: int
    status: SessionStatus
    current_step: int
    total_steps: int


def compute_accelerator_progress(summary: SessionSummary | None) -> int:
    """Compute one accelerator's progress (0-100).

    Args:
        summary: Session summary, or None when the user never opened it

    Returns:
        100 when completed, otherwise round(current_step / K * 100) capped at 100
    """
    if summary is None:
        return 0

    if summary.status == SessionStatus.COMPLETED:
        return 100

    if summary.total_steps <= 0:
        return 0

    return min(round(summary.current_step / summary.total_steps * 100), 100)


def compute_group_progress(
    summaries: Mapping[int, SessionSummary], members: Iterable[int]
) -> int:
    """Mean progress across a group of accelerators; missing sessions count 0."""
    members = list(members)
    if not members:
        return 0

    total = sum(compute_accelerator_progress(summaries.get(n)) for n in members)
    return round(total / len(members))


def count_completed(summaries: Mapping[int, SessionSummary], members: Iterable[int]) -> int:
    return sum(
        1
        for n in members
        if summaries.get(n) is not None and summaries[n].status == SessionStatus.COMPLETED
    )
