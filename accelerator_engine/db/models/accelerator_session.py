"""AcceleratorSessionModel: one row per (user, accelerator) with JSON session data."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from accelerator_engine.db.base import Base


class AcceleratorSessionModel(Base):
    __tablename__ = "accelerator_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "accelerator_number", name="uq_accelerator_sessions_user_number"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    accelerator_number = Column(Integer, nullable=False)

    # Step state
    current_step = Column(Integer, nullable=False, default=1)
    highest_step = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="in_progress")  # in_progress, completed, paused

    # Open-ended per-step content, namespaced by top-level key
    session_data = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
