"""Redis-backed session store.

Layout:
    accelerator:session:{id}         hash   scalar fields (user, number, step, status, timestamps)
    accelerator:session:{id}:data    hash   one JSON-encoded field per session_data key
    accelerator:index:{user}:{n}     string session id, claimed with SET NX

Keeping every session_data key in its own hash field makes partial writes
field-level: an autosave of `notes` never touches a concurrently committed
`sessions` slice.
"""

import json
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from accelerator_engine.core.exceptions import SessionNotFoundError, TransportError
from accelerator_engine.domain.steps import SessionStatus
from accelerator_engine.schemas.sessions import SessionRecord
from accelerator_engine.stores.base import SessionUpdate

logger = structlog.get_logger(__name__)


class RedisSessionStore:
    """SessionStore implementation on Redis hashes."""

    KEY_PREFIX = "accelerator"

    def __init__(self, redis: Redis):
        self.redis = redis

    def _session_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:session:{session_id}"

    def _data_key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}:session:{session_id}:data"

    def _index_key(self, user_id: str, accelerator_number: int) -> str:
        return f"{self.KEY_PREFIX}:index:{user_id}:{accelerator_number}"

    async def _load(self, session_id: str) -> SessionRecord | None:
        fields = await self.redis.hgetall(self._session_key(session_id))
        if not fields:
            return None

        raw_data = await self.redis.hgetall(self._data_key(session_id))
        return SessionRecord(
            id=session_id,
            user_id=fields["user_id"],
            accelerator_number=int(fields["accelerator_number"]),
            current_step=int(fields.get("current_step", 1)),
            highest_step=int(fields.get("highest_step", 1)),
            status=SessionStatus(fields.get("status", SessionStatus.IN_PROGRESS.value)),
            session_data={key: json.loads(value) for key, value in raw_data.items()},
            created_at=datetime.fromisoformat(fields["created_at"]),
            updated_at=datetime.fromisoformat(fields["updated_at"]),
        )

    async def get(self, user_id: str, accelerator_number: int) -> SessionRecord | None:
        try:
            session_id = await self.redis.get(self._index_key(user_id, accelerator_number))
            if session_id is None:
                return None
            return await self._load(session_id)
        except RedisError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

    async def create(
        self, user_id: str, accelerator_number: int, now: datetime | None = None
    ) -> SessionRecord:
        """Create the session, or return the one a concurrent caller created first.

        The session hash is written before the index is claimed, so whoever
        loses the SET NX race can always load the winner's record.
        """
        now = now or datetime.now(UTC)
        session_id = str(uuid.uuid4())

        try:
            await self.redis.hset(
                self._session_key(session_id),
                mapping={
                    "user_id": user_id,
                    "accelerator_number": accelerator_number,
                    "current_step": 1,
                    "highest_step": 1,
                    "status": SessionStatus.IN_PROGRESS.value,
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                },
            )

            claimed = await self.redis.set(
                self._index_key(user_id, accelerator_number), session_id, nx=True
            )
            if claimed:
                logger.info(
                    "session_created",
                    session_id=session_id,
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                )
                return await self._load(session_id)

            # Lost the race: drop our orphan hash and return the winner
            await self.redis.delete(self._session_key(session_id))
            winner_id = await self.redis.get(self._index_key(user_id, accelerator_number))
            logger.info(
                "session_create_race_resolved",
                user_id=user_id,
                accelerator_number=accelerator_number,
                session_id=winner_id,
            )
            return await self._load(winner_id)
        except RedisError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

    async def update(
        self, session_id: str, changes: SessionUpdate, now: datetime | None = None
    ) -> SessionRecord:
        now = now or datetime.now(UTC)
        session_key = self._session_key(session_id)

        try:
            if not await self.redis.exists(session_key):
                raise SessionNotFoundError(session_id)

            # Atomic update using Redis transaction
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(session_key, mapping={**changes.scalar_fields(), "updated_at": now.isoformat()})
                if changes.session_data:
                    pipe.hset(
                        self._data_key(session_id),
                        mapping={key: json.dumps(value) for key, value in changes.session_data.items()},
                    )
                await pipe.execute()

            return await self._load(session_id)
        except RedisError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

    async def list_for_user(self, user_id: str, numbers: Iterable[int]) -> list[SessionRecord]:
        records = []
        for number in numbers:
            record = await self.get(user_id, number)
            if record is not None:
                records.append(record)
        return records
