"""challenges, quiz questions/attempts and curation history

Revision ID: 0002_quiz_and_curation
Revises: 0001_initial_schema
Create Date: 2026-10-01

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision: str = "0002_quiz_and_curation"
down_revision: Union[str, Sequence[str], None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=False), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)


def upgrade() -> None:
    insp = inspect(op.get_bind())
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in inspect(op.get_bind()).get_indexes(table))
        except Exception:
            return False

    if "challenges" not in existing_tables:
        op.create_table(
            "challenges",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(32), nullable=False, server_default="quiz"),
            sa.Column("status", sa.String(32), nullable=False, server_default="active"),
            sa.Column("xp_reward", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("reward_mode", sa.String(16), nullable=False, server_default="fixed_xp"),
            sa.Column("reward_tier_steps", sa.Integer(), nullable=True),
            sa.Column("campaign_id", sa.String(64), nullable=True),
            sa.Column("theme", sa.String(128), nullable=True),
            sa.Column("chas_dimension", sa.String(1), nullable=False, server_default="C"),
            sa.Column("quiz_workflow_status", sa.String(16), nullable=False, server_default="DRAFT"),
            _user_fk("owner_id"),
            _user_fk("created_by"),
            _ts("submitted_at", nullable=True),
            _ts("approved_at", nullable=True),
            _user_fk("approved_by"),
            _ts("published_at", nullable=True),
            _user_fk("published_by"),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "quiz_questions" not in existing_tables:
        op.create_table(
            "quiz_questions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
            sa.Column("question_text", sa.Text(), nullable=False),
            sa.Column("difficulty_level", sa.String(32), nullable=False, server_default="basica"),
            sa.Column("xp_value", sa.Integer(), nullable=False, server_default="10"),
            sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
        )

    if "quiz_options" not in existing_tables:
        op.create_table(
            "quiz_options",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("question_id", sa.Integer(), sa.ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False),
            sa.Column("option_text", sa.String(255), nullable=False),
            sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("explanation", sa.Text(), nullable=True),
        )

    if "quiz_attempts" not in existing_tables:
        op.create_table(
            "quiz_attempts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
            _ts("started_at"),
            _ts("submitted_at", nullable=True),
            sa.Column("score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("max_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("help_used", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("skip_used", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("reward_total_xp_target", sa.Integer(), nullable=True),
            sa.Column("best_score", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("ended_reason", sa.String(16), nullable=True),
            sa.UniqueConstraint("user_id", "challenge_id", name="uq_quiz_attempt_user_challenge"),
        )

    if "user_quiz_answers" not in existing_tables:
        op.create_table(
            "user_quiz_answers",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
            sa.Column("question_id", sa.Integer(), sa.ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False),
            sa.Column(
                "selected_option_id", sa.Integer(), sa.ForeignKey("quiz_options.id", ondelete="SET NULL"), nullable=True
            ),
            sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("xp_earned", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("used_help", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("skipped", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("answered_at"),
            sa.UniqueConstraint("user_id", "question_id", name="uq_user_quiz_answer"),
        )

    if "quiz_versions" not in existing_tables:
        op.create_table(
            "quiz_versions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
            sa.Column("version_number", sa.Integer(), nullable=False),
            sa.Column("reason", sa.String(128), nullable=True),
            sa.Column("snapshot_json", sa.Text(), nullable=False),
            _user_fk("created_by"),
            _ts("created_at"),
            sa.UniqueConstraint("challenge_id", "version_number", name="uq_quiz_version"),
        )

    if "quiz_curation_comments" not in existing_tables:
        op.create_table(
            "quiz_curation_comments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("challenge_id", sa.Integer(), sa.ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False),
            _user_fk("author_id"),
            sa.Column("kind", sa.String(32), nullable=False, server_default="review"),
            sa.Column("message", sa.Text(), nullable=False),
            _ts("created_at"),
        )

    for table, idx_name, cols in (
        ("challenges", "idx_challenges_type", ["type"]),
        ("challenges", "idx_challenges_workflow", ["quiz_workflow_status"]),
        ("quiz_questions", "idx_quiz_questions_challenge", ["challenge_id", "order_index"]),
        ("user_quiz_answers", "idx_user_quiz_answers_challenge", ["user_id", "challenge_id"]),
    ):
        if not _has_index(table, idx_name):
            op.create_index(idx_name, table, cols)


def downgrade() -> None:
    for table in (
        "quiz_curation_comments",
        "quiz_versions",
        "user_quiz_answers",
        "quiz_attempts",
        "quiz_options",
        "quiz_questions",
        "challenges",
    ):
        op.drop_table(table)
