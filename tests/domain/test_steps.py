"""Tests for step transition logic.

Tests cover:
- advance/retreat saturation at both ends
- jump_to limited to reached steps
- complete only from the last step; reopen only from completed
- completed and paused sessions reject navigation
- step bounds invariant over random transition sequences
- per-step completed/current/pending derivation
"""

import random

import pytest

from accelerator_engine.domain.steps import (
    SessionStatus,
    StepState,
    StepStatus,
    advance,
    complete,
    initial_state,
    jump_to,
    pause,
    reopen,
    resume,
    retreat,
    step_statuses,
)

pytestmark = pytest.mark.unit

K = 4


def test_initial_state_is_step_one_in_progress():
    state = initial_state()
    assert state == StepState(current_step=1, highest_step=1, status=SessionStatus.IN_PROGRESS)


# ============================================================================
# advance / retreat
# ============================================================================


def test_advance_moves_forward_and_tracks_highest():
    result = advance(StepState(2, 2), K)
    assert result.allowed is True
    assert result.new_state.current_step == 3
    assert result.new_state.highest_step == 3


def test_advance_keeps_highest_when_revisiting():
    result = advance(StepState(1, 3), K)
    assert result.new_state.current_step == 2
    assert result.new_state.highest_step == 3


def test_advance_at_last_step_is_rejected_noop():
    result = advance(StepState(K, K), K)
    assert result.allowed is False
    assert result.new_state is None


def test_retreat_moves_back():
    result = retreat(StepState(3, 3), K)
    assert result.allowed is True
    assert result.new_state.current_step == 2
    assert result.new_state.highest_step == 3


def test_retreat_at_first_step_is_rejected():
    assert retreat(StepState(1, 1), K).allowed is False


def test_retreat_from_completion_sentinel_lands_on_last_step():
    result = retreat(StepState(K + 1, K + 1), K)
    assert result.new_state.current_step == K


# ============================================================================
# jump_to
# ============================================================================


def test_jump_back_to_reached_step_allowed():
    result = jump_to(StepState(3, 4), 1, K)
    assert result.allowed is True
    assert result.new_state.current_step == 1


def test_jump_forward_within_highest_allowed():
    result = jump_to(StepState(1, 3), 3, K)
    assert result.allowed is True
    assert result.new_state.current_step == 3


def test_jump_ahead_of_highest_rejected():
    result = jump_to(StepState(2, 2), 4, K)
    assert result.allowed is False
    assert "not been reached" in result.reason


@pytest.mark.parametrize("target", [0, K + 1, -3])
def test_jump_out_of_range_rejected(target):
    assert jump_to(StepState(2, K), target, K).allowed is False


# ============================================================================
# complete / reopen / pause
# ============================================================================


def test_complete_from_last_step():
    result = complete(StepState(K, K), K)
    assert result.allowed is True
    assert result.new_state.status == SessionStatus.COMPLETED
    assert result.new_state.current_step == K


def test_complete_before_last_step_rejected():
    result = complete(StepState(K - 1, K - 1), K)
    assert result.allowed is False


def test_reopen_keeps_step():
    result = reopen(StepState(K, K, SessionStatus.COMPLETED))
    assert result.allowed is True
    assert result.new_state.status == SessionStatus.IN_PROGRESS
    assert result.new_state.current_step == K


def test_reopen_in_progress_rejected():
    assert reopen(StepState(2, 2)).allowed is False


@pytest.mark.parametrize("transition", [
    lambda s: advance(s, K),
    lambda s: retreat(s, K),
    lambda s: jump_to(s, 1, K),
])
def test_completed_session_rejects_navigation(transition):
    result = transition(StepState(K, K, SessionStatus.COMPLETED))
    assert result.allowed is False
    assert "completed" in result.reason


def test_paused_session_rejects_navigation_until_resumed():
    paused = pause(StepState(2, 2)).new_state
    assert paused.status == SessionStatus.PAUSED
    assert advance(paused, K).allowed is False

    resumed = resume(paused).new_state
    assert advance(resumed, K).allowed is True


def test_pause_completed_rejected():
    assert pause(StepState(K, K, SessionStatus.COMPLETED)).allowed is False


# ============================================================================
# Invariants
# ============================================================================


def test_step_stays_within_bounds_for_random_sequences():
    rng = random.Random(42)
    for _ in range(200):
        state = initial_state()
        for _ in range(30):
            op = rng.choice(["advance", "retreat", "jump"])
            if op == "advance":
                result = advance(state, K)
            elif op == "retreat":
                result = retreat(state, K)
            else:
                result = jump_to(state, rng.randint(-1, K + 2), K)
            if result.allowed:
                state = result.new_state
            assert 1 <= state.current_step <= K
            assert state.current_step <= state.highest_step <= K


def test_k4_walkthrough_advance_three_times_then_complete():
    state = initial_state()
    for expected in (2, 3, 4):
        state = advance(state, K).new_state
        assert state.current_step == expected

    assert advance(state, K).allowed is False
    assert complete(state, K).new_state.status == SessionStatus.COMPLETED


# ============================================================================
# step_statuses
# ============================================================================


def test_step_statuses_for_in_progress():
    assert step_statuses(StepState(2, 3), K) == [
        StepStatus.COMPLETED,
        StepStatus.CURRENT,
        StepStatus.PENDING,
        StepStatus.PENDING,
    ]


def test_step_statuses_for_completed_session_are_all_completed():
    assert step_statuses(StepState(K, K, SessionStatus.COMPLETED), K) == [StepStatus.COMPLETED] * K
