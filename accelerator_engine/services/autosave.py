"""AutosaveScheduler: per-session debounced, throttled, single-flight autosave.

Responsibilities:
- Debounce: every notify() restarts the timer; a burst of edits becomes one write
- Throttle floor: at most one autosave write per throttle window; early fires are
  deferred to the end of the window, never dropped
- Single-flight: writes hold the session's SessionWriteGuard; a fire during an
  in-flight write is re-armed instead of run concurrently
- Suspension: checked when the timer fires (rows closed, generation in flight,
  manual save in flight, disabled); resuming re-arms pending work
- No-op skip: only top-level keys that differ from the last confirmed write are sent
- Failure: logged, data stays dirty, retried on the next trigger
"""

import asyncio
import copy
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

from accelerator_engine.core.locking import SessionWriteGuard
from accelerator_engine.domain.session_data import changed_keys, pick

logger = structlog.get_logger(__name__)


class SuspendReason(StrEnum):
    ROWS_CLOSED = "rows_closed"
    GENERATION = "generation"
    MANUAL_SAVE = "manual_save"
    DISABLED = "disabled"


class AutosaveScheduler:
    """Owns the debounce timer, throttle state and failure counter of one session."""

    def __init__(
        self,
        session_id: str,
        snapshot: Callable[[], dict[str, Any]],
        write: Callable[[dict[str, Any]], Awaitable[None]],
        guard: SessionWriteGuard,
        *,
        debounce_seconds: float = 3.0,
        throttle_seconds: float = 10.0,
        periodic_flush_seconds: float = 0.0,
        failure_alert_threshold: int = 3,
        confirmed: dict[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the scheduler.

        Args:
            session_id: Session identifier (log context)
            snapshot: Returns the live in-memory session_data
            write: Persists {key: value} for the changed top-level keys; raises on failure
            guard: The session's write guard, shared with every other writer
            debounce_seconds: Quiet period after the last mutation
            throttle_seconds: Minimum spacing between autosave writes
            periodic_flush_seconds: Retry loop interval for dirty data (0 = off)
            failure_alert_threshold: Consecutive failures before repeated_failure is raised
            confirmed: Last persisted session_data (defaults to the current snapshot)
            clock: Monotonic clock (injectable for tests)
        """
        self.session_id = session_id
        self._snapshot = snapshot
        self._write = write
        self._guard = guard
        self.debounce_seconds = debounce_seconds
        self.throttle_seconds = throttle_seconds
        self.periodic_flush_seconds = periodic_flush_seconds
        self.failure_alert_threshold = failure_alert_threshold
        self._clock = clock

        self._confirmed: dict[str, Any] = copy.deepcopy(confirmed if confirmed is not None else snapshot())
        self._suspended: set[SuspendReason] = set()
        self._timer: asyncio.Task | None = None
        self._periodic: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._last_write_at: float | None = None
        self._closed = False

        self.dirty = False
        self.consecutive_failures = 0
        self.write_count = 0
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def suspended(self) -> bool:
        return bool(self._suspended)

    @property
    def suspended_reasons(self) -> frozenset[SuspendReason]:
        return frozenset(self._suspended)

    @property
    def repeated_failure(self) -> bool:
        return self.consecutive_failures >= self.failure_alert_threshold

    @property
    def pending(self) -> bool:
        """Whether a debounce or throttle timer is armed."""
        return self._timer is not None and not self._timer.done()

    def pending_keys(self) -> list[str]:
        return changed_keys(self._snapshot(), self._confirmed)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic flush loop when configured."""
        if self.periodic_flush_seconds > 0 and self._periodic is None:
            self._periodic = asyncio.create_task(self._periodic_loop())

    async def close(self, flush: bool = True) -> None:
        """Cancel timers and write any pending change. Failures are logged, not raised.

        Args:
            flush: False drops pending changes (the session now belongs to another owner)
        """
        self._closed = True
        self.cancel_pending()
        if self._periodic is not None:
            self._periodic.cancel()
            self._periodic = None
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if not flush:
            if self.pending_keys():
                logger.warning("autosave_discarded", session_id=self.session_id, keys=self.pending_keys())
            return
        if self.pending_keys():
            await self.flush()

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify(self) -> None:
        """Record a local mutation and restart the debounce timer."""
        if self._closed:
            return
        self.dirty = True
        self._arm(self.debounce_seconds)

    def suspend(self, reason: SuspendReason) -> None:
        self._suspended.add(reason)
        logger.debug("autosave_suspended", session_id=self.session_id, reason=reason.value)

    def resume(self, reason: SuspendReason) -> None:
        self._suspended.discard(reason)
        logger.debug("autosave_resumed", session_id=self.session_id, reason=reason.value)
        if not self._suspended and self.dirty and not self._closed:
            self._arm(self.debounce_seconds)

    def cancel_pending(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def mark_confirmed(self, fields: dict[str, Any]) -> None:
        """Record keys another writer (a generation commit, a step write) just persisted."""
        self._confirmed.update(copy.deepcopy(fields))
        self.dirty = bool(self.pending_keys())
        if not self.dirty:
            self.cancel_pending()

    async def flush(self, raise_errors: bool = False) -> bool:
        """Write pending changes now, bypassing debounce and throttle (not the guard).

        Args:
            raise_errors: Re-raise the store error (manual save) instead of only logging it

        Returns:
            True if a write happened
        """
        self.cancel_pending()
        return await self._write_pending(reason="flush", raise_errors=raise_errors)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _arm(self, delay: float) -> None:
        self.cancel_pending()
        self._timer = asyncio.create_task(self._fire_after(delay))

    async def _fire_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach from _timer: a notify() during the write must not cancel it
        task = asyncio.current_task()
        self._timer = None
        if task is not None:
            self._background.add(task)
        try:
            await self._on_timer()
        finally:
            if task is not None:
                self._background.discard(task)

    async def _on_timer(self) -> None:
        if self._suspended:
            logger.debug(
                "autosave_skipped_suspended",
                session_id=self.session_id,
                reasons=sorted(r.value for r in self._suspended),
            )
            return

        if self._guard.locked:
            # Another write is in flight; try again after it has had time to finish
            self._arm(self.debounce_seconds)
            return

        if self._last_write_at is not None:
            elapsed = self._clock() - self._last_write_at
            if elapsed < self.throttle_seconds:
                remaining = self.throttle_seconds - elapsed
                logger.debug("autosave_throttled", session_id=self.session_id, retry_in=round(remaining, 3))
                self._arm(remaining)
                return

        await self._write_pending(reason="autosave")

    async def _write_pending(self, reason: str, raise_errors: bool = False) -> bool:
        async with self._guard.hold(reason):
            keys = self.pending_keys()
            if not keys:
                self.dirty = False
                logger.debug("autosave_skipped_noop", session_id=self.session_id, reason=reason)
                return False

            fields = pick(self._snapshot(), keys)
            try:
                await self._write(fields)
            except Exception as e:
                self.consecutive_failures += 1
                self.last_error = str(e)
                self.dirty = True
                logger.warning(
                    "autosave_write_failed",
                    session_id=self.session_id,
                    reason=reason,
                    keys=keys,
                    consecutive_failures=self.consecutive_failures,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if self.consecutive_failures == self.failure_alert_threshold:
                    logger.error(
                        "autosave_repeated_failure",
                        session_id=self.session_id,
                        consecutive_failures=self.consecutive_failures,
                    )
                if raise_errors:
                    raise
                return False

            self._confirmed.update(fields)
            self._last_write_at = self._clock()
            self.consecutive_failures = 0
            self.last_error = None
            self.write_count += 1
            # Edits made while the write was in flight stay dirty and keep their timer
            self.dirty = bool(self.pending_keys())
            logger.info("autosave_written", session_id=self.session_id, reason=reason, keys=keys)
            return True

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.periodic_flush_seconds)
            if self.dirty and not self._suspended and not self._guard.locked and not self.pending:
                await self._write_pending(reason="periodic")
