"""create accelerator_sessions table

Revision ID: 0a1c5e7f9b21
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1c5e7f9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create accelerator_sessions with one row per (user, accelerator)."""
    op.create_table(
        "accelerator_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("accelerator_number", sa.Integer(), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("highest_step", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="in_progress"),
        sa.Column("session_data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "accelerator_number", name="uq_accelerator_sessions_user_number"),
    )
    op.create_index("ix_accelerator_sessions_user_id", "accelerator_sessions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_accelerator_sessions_user_id", table_name="accelerator_sessions")
    op.drop_table("accelerator_sessions")
