"""Tests for progress computation."""

import pytest

from accelerator_engine.domain.progress import (
    SessionSummary,
    compute_accelerator_progress,
    compute_group_progress,
    count_completed,
)
from accelerator_engine.domain.steps import SessionStatus

pytestmark = pytest.mark.unit


def test_unopened_accelerator_is_zero():
    assert compute_accelerator_progress(None) == 0


def test_completed_is_hundred():
    assert compute_accelerator_progress(SessionSummary(1, SessionStatus.COMPLETED, 2, 6)) == 100


@pytest.mark.parametrize(
    "step,total,expected",
    [(1, 6, 17), (3, 6, 50), (6, 6, 100), (7, 6, 100), (2, 3, 67)],
)
def test_in_progress_is_rounded_ratio_capped(step, total, expected):
    summary = SessionSummary(1, SessionStatus.IN_PROGRESS, step, total)
    assert compute_accelerator_progress(summary) == expected


def test_group_progress_counts_missing_as_zero():
    summaries = {1: SessionSummary(1, SessionStatus.COMPLETED, 6, 6)}
    assert compute_group_progress(summaries, [1, 2]) == 50


def test_group_progress_empty_group():
    assert compute_group_progress({}, []) == 0


def test_count_completed():
    summaries = {
        1: SessionSummary(1, SessionStatus.COMPLETED, 6, 6),
        2: SessionSummary(2, SessionStatus.IN_PROGRESS, 6, 6),
    }
    assert count_completed(summaries, [1, 2, 3]) == 1
