"""Tests for AutosaveScheduler.

Timing tests use real short sleeps (debounce 50ms) instead of a fake event
loop clock; margins are several timer periods wide.

Tests cover:
- a burst of edits produces one write after the quiet period
- the throttle floor defers, never drops, a second write
- suspension blocks writes until resumed
- only changed top-level keys are written; no-op changes write nothing
- failures keep data dirty, count up, and recover on the next write
- single-flight against other writers holding the guard
"""

import asyncio

import pytest

from accelerator_engine.core.locking import SessionWriteGuard
from accelerator_engine.services.autosave import AutosaveScheduler, SuspendReason

pytestmark = pytest.mark.unit

DEBOUNCE = 0.05


class RecordingWriter:
    """Write callable that records every call and can be told to fail."""

    def __init__(self):
        self.calls: list[dict] = []
        self.fail = False
        self.delay = 0.0

    async def __call__(self, fields):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("store unreachable")
        self.calls.append(fields)


@pytest.fixture
def data():
    return {"notes": "", "sessions": []}


@pytest.fixture
def writer():
    return RecordingWriter()


@pytest.fixture
def guard():
    return SessionWriteGuard("session-1")


@pytest.fixture
async def scheduler(data, writer, guard):
    autosave = AutosaveScheduler(
        "session-1",
        lambda: data,
        writer,
        guard,
        debounce_seconds=DEBOUNCE,
        throttle_seconds=0.0,
    )
    yield autosave
    autosave.cancel_pending()


def _scheduler(data, writer, guard, **kwargs):
    kwargs.setdefault("debounce_seconds", DEBOUNCE)
    return AutosaveScheduler("session-1", lambda: data, writer, guard, **kwargs)


# ============================================================================
# Debounce and throttle
# ============================================================================


async def test_burst_of_edits_writes_once(scheduler, data, writer):
    for i in range(5):
        data["notes"] = f"draft {i}"
        scheduler.notify()
        await asyncio.sleep(0.01)

    await asyncio.sleep(DEBOUNCE * 3)

    assert len(writer.calls) == 1
    assert writer.calls[0] == {"notes": "draft 4"}
    assert scheduler.dirty is False


async def test_no_write_before_quiet_period(scheduler, data, writer):
    data["notes"] = "typing"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE / 5)

    assert writer.calls == []
    assert scheduler.pending is True


async def test_throttle_defers_second_write(data, writer, guard):
    autosave = _scheduler(data, writer, guard, throttle_seconds=0.3)

    data["notes"] = "first"
    autosave.notify()
    await asyncio.sleep(0.1)
    assert len(writer.calls) == 1

    data["notes"] = "second"
    autosave.notify()
    await asyncio.sleep(0.1)
    assert len(writer.calls) == 1  # inside the throttle window

    await asyncio.sleep(0.3)
    assert len(writer.calls) == 2
    assert writer.calls[1] == {"notes": "second"}
    autosave.cancel_pending()


# ============================================================================
# Changed keys
# ============================================================================


async def test_only_changed_keys_are_written(scheduler, data, writer):
    data["sessions"] = [{"index": 1, "title": "Water"}]
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 3)

    assert writer.calls == [{"sessions": [{"index": 1, "title": "Water"}]}]


async def test_reverted_change_writes_nothing(scheduler, data, writer):
    data["notes"] = "temporary"
    scheduler.notify()
    data["notes"] = ""
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 3)

    assert writer.calls == []
    assert scheduler.dirty is False


async def test_flush_without_changes_is_noop(scheduler, writer):
    assert await scheduler.flush() is False
    assert writer.calls == []


async def test_mark_confirmed_clears_dirty_keys(scheduler, data, writer):
    data["sessions"] = [{"index": 1}]
    scheduler.notify()
    scheduler.mark_confirmed({"sessions": [{"index": 1}]})

    assert scheduler.dirty is False
    assert scheduler.pending is False
    await asyncio.sleep(DEBOUNCE * 3)
    assert writer.calls == []


async def test_mark_confirmed_keeps_other_dirty_keys(scheduler, data):
    data["sessions"] = [{"index": 1}]
    data["notes"] = "typed"
    scheduler.notify()
    scheduler.mark_confirmed({"sessions": [{"index": 1}]})

    assert scheduler.dirty is True
    assert scheduler.pending_keys() == ["notes"]


# ============================================================================
# Suspension
# ============================================================================


async def test_suspended_scheduler_does_not_write(scheduler, data, writer):
    scheduler.suspend(SuspendReason.GENERATION)
    data["notes"] = "edited during generation"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 3)

    assert writer.calls == []
    assert scheduler.dirty is True


async def test_resume_rearms_pending_work(scheduler, data, writer):
    scheduler.suspend(SuspendReason.GENERATION)
    data["notes"] = "edited during generation"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 2)

    scheduler.resume(SuspendReason.GENERATION)
    await asyncio.sleep(DEBOUNCE * 3)

    assert writer.calls == [{"notes": "edited during generation"}]


async def test_every_reason_must_be_resumed(scheduler, data, writer):
    scheduler.suspend(SuspendReason.GENERATION)
    scheduler.suspend(SuspendReason.MANUAL_SAVE)
    data["notes"] = "x"
    scheduler.notify()

    scheduler.resume(SuspendReason.GENERATION)
    await asyncio.sleep(DEBOUNCE * 3)
    assert writer.calls == []
    assert scheduler.suspended_reasons == frozenset({SuspendReason.MANUAL_SAVE})

    scheduler.resume(SuspendReason.MANUAL_SAVE)
    await asyncio.sleep(DEBOUNCE * 3)
    assert len(writer.calls) == 1


# ============================================================================
# Failures
# ============================================================================


async def test_failed_write_stays_dirty_and_recovers(scheduler, data, writer):
    writer.fail = True
    data["notes"] = "unsaved"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 3)

    assert scheduler.consecutive_failures == 1
    assert scheduler.dirty is True
    assert "store unreachable" in scheduler.last_error

    writer.fail = False
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 3)

    assert writer.calls == [{"notes": "unsaved"}]
    assert scheduler.consecutive_failures == 0
    assert scheduler.last_error is None


async def test_repeated_failure_flag_after_threshold(data, writer, guard):
    autosave = _scheduler(data, writer, guard, failure_alert_threshold=3)
    writer.fail = True
    data["notes"] = "unsaved"

    for _ in range(2):
        await autosave.flush()
    assert autosave.repeated_failure is False

    await autosave.flush()
    assert autosave.repeated_failure is True


async def test_flush_raise_errors_reraises(scheduler, data, writer):
    writer.fail = True
    data["notes"] = "unsaved"

    with pytest.raises(ConnectionError):
        await scheduler.flush(raise_errors=True)

    assert scheduler.consecutive_failures == 1


async def test_periodic_flush_retries_dirty_data(data, writer, guard):
    autosave = _scheduler(data, writer, guard, periodic_flush_seconds=0.05)
    autosave.start()
    writer.fail = True
    data["notes"] = "unsaved"
    await autosave.flush()

    writer.fail = False
    await asyncio.sleep(0.2)

    assert writer.calls == [{"notes": "unsaved"}]
    await autosave.close()


# ============================================================================
# Single-flight and close
# ============================================================================


async def test_timer_waits_for_guard_holder(scheduler, data, writer, guard):
    data["notes"] = "queued"
    scheduler.notify()

    async with guard.hold("generation_commit"):
        await asyncio.sleep(DEBOUNCE * 2)
        assert writer.calls == []

    await asyncio.sleep(DEBOUNCE * 3)
    assert writer.calls == [{"notes": "queued"}]
    assert guard.max_in_flight == 1


async def test_edit_during_inflight_write_is_not_lost(scheduler, data, writer):
    writer.delay = DEBOUNCE * 2
    data["notes"] = "first"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 1.5)  # write in flight

    data["notes"] = "second"
    scheduler.notify()
    await asyncio.sleep(DEBOUNCE * 8)

    assert [c["notes"] for c in writer.calls] == ["first", "second"]
    assert scheduler.dirty is False


async def test_close_flushes_pending_change(scheduler, data, writer):
    data["notes"] = "last words"
    scheduler.notify()

    await scheduler.close()

    assert writer.calls == [{"notes": "last words"}]
    scheduler.notify()
    assert scheduler.pending is False
