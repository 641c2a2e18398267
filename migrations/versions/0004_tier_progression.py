"""tier progression requests

Revision ID: 0004_tier_progression
Revises: 0003_finance_forum_sepbook
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision: str = "0004_tier_progression"
down_revision: Union[str, Sequence[str], None] = "0003_finance_forum_sepbook"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    existing_tables = set(inspect(op.get_bind()).get_table_names())
    if "tier_progression_requests" in existing_tables:
        return
    op.create_table(
        "tier_progression_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("current_tier", sa.String(8), nullable=False),
        sa.Column("target_tier", sa.String(8), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    )
    op.create_index("idx_tier_progression_requests_status", "tier_progression_requests", ["status"])
    op.create_index("idx_tier_progression_requests_user", "tier_progression_requests", ["user_id"])


def downgrade() -> None:
    op.drop_table("tier_progression_requests")
