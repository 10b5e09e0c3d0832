"""Create session_entries table

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "session_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=False),
        sa.UniqueConstraint("session_id", "key", name="uq_session_entries_session_key"),
    )

    op.create_index("ix_session_entries_session_id", "session_entries", ["session_id"])
    op.create_index("ix_session_entries_updated_at", "session_entries", ["updated_at"])


def downgrade() -> None:
    op.drop_index("ix_session_entries_updated_at", table_name="session_entries")
    op.drop_index("ix_session_entries_session_id", table_name="session_entries")
    op.drop_table("session_entries")
