"""Session write serialisation and cross-process ownership leases.

This module provides:
- SessionWriteGuard: in-process single-flight guard for every store write of one session
- SessionLease: Redis lease enforcing one logical owner per session across processes
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class SessionWriteGuard:
    """Totally orders the store writes of one session.

    Autosave, manual save, step transitions and generation commits all hold the
    guard while they write. The counters make the single-flight property
    observable: max_in_flight never exceeds 1.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._lock = asyncio.Lock()
        self.in_flight = 0
        self.max_in_flight = 0
        self.acquisitions = 0

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, reason: str = "write") -> AsyncGenerator[None, None]:
        """Hold the guard for the duration of one write.

        Args:
            reason: Label for debug logging (autosave, manual_save, step, generation_commit)
        """
        async with self._lock:
            self.in_flight += 1
            self.acquisitions += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            if self.in_flight > 1:
                logger.error(
                    "session_write_overlap",
                    session_id=self.session_id,
                    in_flight=self.in_flight,
                    reason=reason,
                )
            try:
                yield
            finally:
                self.in_flight -= 1


class SessionLease:
    """Distributed ownership lease for a session using Redis SET NX + TTL."""

    LEASE_PREFIX = "accelerator:lease:"
    DEFAULT_TTL = 300  # 5 minutes

    def __init__(self, redis_client: redis.Redis, ttl: int | None = None):
        self.redis = redis_client
        self.ttl = ttl or self.DEFAULT_TTL

    def _lease_key(self, session_key: str) -> str:
        return f"{self.LEASE_PREFIX}{session_key}"

    async def acquire(self, session_key: str, owner: str) -> bool:
        """Attempt to take the lease.

        Args:
            session_key: "{user_id}:{accelerator_number}"
            owner: Identifier of the owning process

        Returns:
            True if acquired (or already ours and extended), False if held by another owner
        """
        key = self._lease_key(session_key)
        lease_value = f"{owner}|{datetime.now(UTC).isoformat()}"
        if await self.redis.set(key, lease_value, nx=True, ex=self.ttl):
            return True

        current = await self.redis.get(key)
        if current and current.startswith(f"{owner}|"):
            await self.redis.expire(key, self.ttl)
            return True

        return False

    async def release(self, session_key: str, owner: str) -> bool:
        """Release the lease if this owner holds it."""
        key = self._lease_key(session_key)
        current = await self.redis.get(key)
        if current and current.startswith(f"{owner}|"):
            await self.redis.delete(key)
            return True
        return False

    async def holder(self, session_key: str) -> dict | None:
        """Return lease info or None if the session is unowned."""
        key = self._lease_key(session_key)
        current = await self.redis.get(key)
        if not current:
            return None

        owner, _, acquired_at = current.partition("|")
        return {
            "owner": owner,
            "acquired_at": acquired_at or None,
            "expires_in": await self.redis.ttl(key),
        }

    async def extend(self, session_key: str, owner: str) -> bool:
        """Refresh the TTL of a lease this owner holds."""
        key = self._lease_key(session_key)
        current = await self.redis.get(key)
        if current and current.startswith(f"{owner}|"):
            await self.redis.expire(key, self.ttl)
            return True
        return False

    @asynccontextmanager
    async def lease(self, session_key: str, owner: str) -> AsyncGenerator[bool, None]:
        """Context manager holding the lease for the block.

        Yields:
            True if the lease was acquired
        """
        acquired = await self.acquire(session_key, owner)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(session_key, owner)
