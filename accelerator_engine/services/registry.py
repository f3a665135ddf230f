"""ControllerRegistry: one WorkflowController per (user, accelerator) per process.

Across processes the optional Redis SessionLease keeps a single logical owner
per session; a lease held elsewhere surfaces as SessionOwnershipError.

Each held controller gets a keepalive task that:
- renews the lease every session_lease_renew_seconds
- evicts the controller without flushing when the lease turns out to be lost
- flushes and evicts the controller after controller_idle_seconds without use
"""

import asyncio
import os
import socket
import time
from collections.abc import Callable

import structlog

from accelerator_engine.core.config import Settings, get_settings
from accelerator_engine.core.exceptions import SessionOwnershipError
from accelerator_engine.core.locking import SessionLease
from accelerator_engine.generation.client import GenerationClient
from accelerator_engine.services.generation_orchestrator import GenerationState
from accelerator_engine.services.workflow_controller import WorkflowController
from accelerator_engine.stores.base import SessionStore

logger = structlog.get_logger(__name__)

ControllerKey = tuple[str, int]


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class ControllerRegistry:
    """Process-wide cache of open controllers."""

    def __init__(
        self,
        store: SessionStore,
        client: GenerationClient,
        *,
        lease: SessionLease | None = None,
        owner: str | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.client = client
        self.lease = lease
        self.owner = owner or default_owner_id()
        self.settings = settings or get_settings()
        self._clock = clock
        self._controllers: dict[ControllerKey, WorkflowController] = {}
        self._locks: dict[ControllerKey, asyncio.Lock] = {}
        self._last_used: dict[ControllerKey, float] = {}
        self._keepalives: dict[ControllerKey, asyncio.Task] = {}

    @staticmethod
    def _lease_key(user_id: str, accelerator_number: int) -> str:
        return f"{user_id}:{accelerator_number}"

    def __len__(self) -> int:
        return len(self._controllers)

    async def get(self, user_id: str, accelerator_number: int) -> WorkflowController:
        """Return the open controller, loading (and leasing) it on first use.

        Raises:
            SessionOwnershipError: If another process holds the session lease
            PrerequisiteNotMetError: If the accelerator is still locked for the user
        """
        key = (user_id, accelerator_number)
        while True:
            lock = self._locks.setdefault(key, asyncio.Lock())
            async with lock:
                # An eviction dropped this lock while we waited on it
                if self._locks.get(key) is not lock:
                    continue
                return await self._get_locked(key)

    async def _get_locked(self, key: ControllerKey) -> WorkflowController:
        user_id, accelerator_number = key
        lease_key = self._lease_key(user_id, accelerator_number)
        if self.lease is not None:
            if not await self.lease.acquire(lease_key, self.owner):
                holder = await self.lease.holder(lease_key)
                logger.error(
                    "session_ownership_conflict",
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                    holder=holder["owner"] if holder else None,
                )
                if key not in self._controllers:
                    self._locks.pop(key, None)
                raise SessionOwnershipError(lease_key, holder["owner"] if holder else None)

        self._last_used[key] = self._clock()
        controller = self._controllers.get(key)
        if controller is not None:
            return controller

        try:
            controller = await WorkflowController.open(
                user_id,
                accelerator_number,
                self.store,
                self.client,
                settings=self.settings,
            )
        except Exception:
            self._last_used.pop(key, None)
            self._locks.pop(key, None)
            if self.lease is not None:
                await self.lease.release(lease_key, self.owner)
            raise

        self._controllers[key] = controller
        if self.lease is not None or self.settings.controller_idle_seconds > 0:
            self._keepalives[key] = asyncio.create_task(self._keepalive(key))
        return controller

    async def release(self, user_id: str, accelerator_number: int) -> None:
        """Shut a controller down and give up its lease."""
        key = (user_id, accelerator_number)
        keepalive = self._keepalives.pop(key, None)
        if keepalive is not None and keepalive is not asyncio.current_task():
            keepalive.cancel()
        await self._evict(key, flush=True)
        if self.lease is not None:
            await self.lease.release(self._lease_key(user_id, accelerator_number), self.owner)

    async def _evict(self, key: ControllerKey, *, flush: bool) -> None:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            controller = self._controllers.pop(key, None)
            self._last_used.pop(key, None)
            self._locks.pop(key, None)
            if controller is not None:
                await controller.shutdown(flush=flush)

    def _is_idle(self, key: ControllerKey) -> bool:
        idle_seconds = self.settings.controller_idle_seconds
        if idle_seconds <= 0:
            return False
        controller = self._controllers.get(key)
        if controller is not None and controller.orchestrator.state == GenerationState.IN_FLIGHT:
            return False
        last_used = self._last_used.get(key, self._clock())
        return self._clock() - last_used >= idle_seconds

    async def _keepalive(self, key: ControllerKey) -> None:
        user_id, accelerator_number = key
        lease_key = self._lease_key(user_id, accelerator_number)
        interval = self.settings.session_lease_renew_seconds
        if self.settings.controller_idle_seconds > 0:
            interval = min(interval, self.settings.controller_idle_seconds)

        while True:
            await asyncio.sleep(interval)

            if self._is_idle(key):
                logger.info(
                    "controller_idle_evicted",
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                )
                await self.release(user_id, accelerator_number)
                return

            if self.lease is None:
                continue

            try:
                renewed = await self.lease.extend(lease_key, self.owner)
            except Exception as e:
                # The lease is still valid until its TTL runs out; try again next tick
                logger.warning(
                    "session_lease_renew_failed",
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            if not renewed:
                logger.error(
                    "session_lease_lost",
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                    owner=self.owner,
                )
                self._keepalives.pop(key, None)
                await self._evict(key, flush=False)
                return

    async def shutdown(self) -> None:
        for user_id, accelerator_number in list(self._controllers):
            try:
                await self.release(user_id, accelerator_number)
            except Exception as e:
                logger.warning(
                    "controller_release_failed",
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        for keepalive in self._keepalives.values():
            keepalive.cancel()
        self._keepalives.clear()
