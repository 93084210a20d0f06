"""Create challenge_sessions table

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
        "challenge_sessions",
        sa.Column("key", sa.String(128), primary_key=True),
        sa.Column("requested_amount", sa.Float, nullable=False),
        sa.Column("challenge_token", sa.String(8192), nullable=False),
        sa.Column("difficulty", sa.Integer, nullable=False),
        sa.Column("rounds_required", sa.Integer, nullable=False),
        sa.Column("rounds_completed", sa.Integer, nullable=False),
        sa.Column("captcha_used", sa.Boolean, default=False, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=False),
    )

    # The expiry sweep filters on expires_at
    op.create_index("ix_challenge_sessions_expires_at", "challenge_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_challenge_sessions_expires_at", table_name="challenge_sessions")
    op.drop_table("challenge_sessions")
