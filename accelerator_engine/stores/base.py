"""SessionStore Protocol: the persistence contract of the engine.

Implementations:
- RedisSessionStore: one hash per session, one hash field per session_data key
- SqlSessionStore: SQLAlchemy row with a JSON session_data column
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from accelerator_engine.domain.steps import SessionStatus
from accelerator_engine.schemas.sessions import SessionRecord


@dataclass
class SessionUpdate:
    """Partial update: only the fields that are set are written.

    session_data holds top-level keys to overwrite; keys not listed keep their
    stored value.
    """

    current_step: int | None = None
    highest_step: int | None = None
    status: SessionStatus | None = None
    session_data: dict[str, Any] = field(default_factory=dict)

    def scalar_fields(self) -> dict[str, Any]:
        values = {
            "current_step": self.current_step,
            "highest_step": self.highest_step,
            "status": self.status.value if self.status is not None else None,
        }
        return {key: value for key, value in values.items() if value is not None}

    def is_empty(self) -> bool:
        return not self.scalar_fields() and not self.session_data


@runtime_checkable
class SessionStore(Protocol):
    """Persistence contract. All methods raise TransportError when the backend is unreachable."""

    async def get(self, user_id: str, accelerator_number: int) -> SessionRecord | None:
        """Return the session for (user, accelerator) or None."""
        ...

    async def create(self, user_id: str, accelerator_number: int) -> SessionRecord:
        """Create the session at step 1, in_progress, empty data.

        Idempotent on (user, accelerator): concurrent callers get the same record.
        """
        ...

    async def update(self, session_id: str, changes: SessionUpdate) -> SessionRecord:
        """Apply a partial update and refresh updated_at.

        Raises:
            SessionNotFoundError: If the session id does not exist
        """
        ...

    async def list_for_user(self, user_id: str, numbers: Iterable[int]) -> list[SessionRecord]:
        """Return the user's sessions for the given accelerator numbers (missing ones skipped)."""
        ...
