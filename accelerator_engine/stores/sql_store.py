"""SQLAlchemy-backed session store.

session_data lives in one JSON column; partial updates read the row with
SELECT ... FOR UPDATE, overwrite the listed top-level keys and mark the column
modified so SQLAlchemy flushes it.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from accelerator_engine.core.exceptions import SessionNotFoundError, TransportError
from accelerator_engine.db.models.accelerator_session import AcceleratorSessionModel
from accelerator_engine.domain.steps import SessionStatus
from accelerator_engine.schemas.sessions import SessionRecord
from accelerator_engine.stores.base import SessionUpdate

logger = structlog.get_logger(__name__)


def _to_record(row: AcceleratorSessionModel) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        accelerator_number=row.accelerator_number,
        current_step=row.current_step,
        highest_step=row.highest_step,
        status=SessionStatus(row.status),
        session_data=dict(row.session_data or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlSessionStore:
    """SessionStore implementation on the accelerator_sessions table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize with a session factory.

        Args:
            session_factory: SQLAlchemy async session factory for database access
        """
        self.session_factory = session_factory

    async def get(self, user_id: str, accelerator_number: int) -> SessionRecord | None:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AcceleratorSessionModel).where(
                        AcceleratorSessionModel.user_id == user_id,
                        AcceleratorSessionModel.accelerator_number == accelerator_number,
                    )
                )
                row = result.scalar_one_or_none()
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

    async def create(self, user_id: str, accelerator_number: int) -> SessionRecord:
        """Insert the session; a unique-constraint loss returns the existing row."""
        try:
            async with self.session_factory() as session:
                row = AcceleratorSessionModel(
                    user_id=user_id,
                    accelerator_number=accelerator_number,
                    current_step=1,
                    highest_step=1,
                    status=SessionStatus.IN_PROGRESS.value,
                    session_data={},
                )
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.info(
                        "session_create_race_resolved",
                        user_id=user_id,
                        accelerator_number=accelerator_number,
                    )
                else:
                    await session.refresh(row)
                    logger.info(
                        "session_created",
                        session_id=row.id,
                        user_id=user_id,
                        accelerator_number=accelerator_number,
                    )
                    return _to_record(row)
        except SQLAlchemyError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

        existing = await self.get(user_id, accelerator_number)
        if existing is None:
            raise TransportError(
                f"Session for {user_id}/{accelerator_number} vanished after create conflict"
            )
        return existing

    async def update(self, session_id: str, changes: SessionUpdate) -> SessionRecord:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AcceleratorSessionModel)
                    .where(AcceleratorSessionModel.id == session_id)
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise SessionNotFoundError(session_id)

                for key, value in changes.scalar_fields().items():
                    setattr(row, key, value)

                if changes.session_data:
                    row.session_data = {**(row.session_data or {}), **changes.session_data}
                    flag_modified(row, "session_data")

                row.updated_at = datetime.now(UTC)
                await session.commit()
                await session.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise TransportError(f"Session store unreachable: {e}") from e

    async def list_for_user(self, user_id: str, numbers: Iterable[int]) -> list[SessionRecord]:
        numbers = list(numbers)
        if not numbers:
            return []
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(AcceleratorSessionModel)
                    .where(
                        AcceleratorSessionModel.user_id == user_id,
                        AcceleratorSessionModel.accelerator_number.in_(numbers),
                    )
                    .order_by(AcceleratorSessionModel.accelerator_number)
                )
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise TransportError(f"Session store unreachable: {e}") from e
