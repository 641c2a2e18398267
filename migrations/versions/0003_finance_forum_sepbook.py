"""finance requests, forum and SEPBook

Revision ID: 0003_finance_forum_sepbook
Revises: 0002_quiz_and_curation
Create Date: 2026-10-01

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision: str = "0003_finance_forum_sepbook"
down_revision: Union[str, Sequence[str], None] = "0002_quiz_and_curation"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _ts(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=False), nullable=True)
    return sa.Column(name, sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def _fk(name: str, target: str, *, nullable: bool = True, ondelete: str = "SET NULL") -> sa.Column:
    return sa.Column(name, sa.Integer(), sa.ForeignKey(target, ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    insp = inspect(op.get_bind())
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in inspect(op.get_bind()).get_indexes(table))
        except Exception:
            return False

    # --- finance ---
    if "finance_requests" not in existing_tables:
        op.create_table(
            "finance_requests",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("protocol", sa.String(32), nullable=True),
            _fk("created_by", "users.id"),
            sa.Column("created_by_name", sa.String(200), nullable=True),
            sa.Column("created_by_email", sa.String(320), nullable=True),
            sa.Column("created_by_matricula", sa.String(80), nullable=True),
            sa.Column("company", sa.String(64), nullable=False),
            sa.Column("training_operational", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("request_kind", sa.String(32), nullable=False),
            sa.Column("expense_type", sa.String(64), nullable=False),
            sa.Column("coordination", sa.String(64), nullable=False),
            sa.Column("date_start", sa.Date(), nullable=False),
            sa.Column("date_end", sa.Date(), nullable=True),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(3), nullable=False, server_default="BRL"),
            sa.Column("status", sa.String(32), nullable=False, server_default="Enviado"),
            sa.Column("last_observation", sa.Text(), nullable=True),
            _ts("analyst_viewed_at", nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("protocol", name="uq_finance_requests_protocol"),
        )

    if "finance_request_items" not in existing_tables:
        op.create_table(
            "finance_request_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("request_id", "finance_requests.id", nullable=False, ondelete="CASCADE"),
            sa.Column("idx", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("expense_type", sa.String(64), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("amount_cents", sa.Integer(), nullable=True),
        )

    if "finance_request_attachments" not in existing_tables:
        op.create_table(
            "finance_request_attachments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("request_id", "finance_requests.id", nullable=False, ondelete="CASCADE"),
            _fk("item_id", "finance_request_items.id"),
            _fk("uploaded_by", "users.id"),
            sa.Column("storage_key", sa.String(600), nullable=False),
            sa.Column("filename", sa.String(240), nullable=True),
            sa.Column("content_type", sa.String(120), nullable=True),
            sa.Column("size_bytes", sa.Integer(), nullable=True),
            _ts("created_at"),
        )

    if "finance_request_status_history" not in existing_tables:
        op.create_table(
            "finance_request_status_history",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("request_id", "finance_requests.id", nullable=False, ondelete="CASCADE"),
            _fk("changed_by", "users.id"),
            sa.Column("from_status", sa.String(32), nullable=True),
            sa.Column("to_status", sa.String(32), nullable=False),
            sa.Column("observation", sa.Text(), nullable=True),
            _ts("created_at"),
        )

    # --- forum ---
    if "forum_topics" not in existing_tables:
        op.create_table(
            "forum_topics",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("chas_dimension", sa.String(1), nullable=False, server_default="C"),
            sa.Column("status", sa.String(16), nullable=False, server_default="open"),
            _fk("created_by", "users.id"),
            sa.Column("summary", sa.Text(), nullable=True),
            _ts("closed_at", nullable=True),
            _fk("closed_by", "users.id"),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "forum_posts" not in existing_tables:
        op.create_table(
            "forum_posts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("topic_id", "forum_topics.id", nullable=False, ondelete="CASCADE"),
            _fk("user_id", "users.id"),
            _fk("parent_post_id", "forum_posts.id"),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("attachments_json", sa.Text(), nullable=True),
            sa.Column("tags_json", sa.Text(), nullable=True),
            sa.Column("likes_count", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "forum_post_likes" not in existing_tables:
        op.create_table(
            "forum_post_likes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("post_id", "forum_posts.id", nullable=False, ondelete="CASCADE"),
            _fk("user_id", "users.id", nullable=False, ondelete="CASCADE"),
            _ts("created_at"),
            sa.UniqueConstraint("post_id", "user_id", name="uq_forum_post_like"),
        )

    if "forum_mentions" not in existing_tables:
        op.create_table(
            "forum_mentions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("post_id", "forum_posts.id", nullable=False, ondelete="CASCADE"),
            _fk("mentioned_user_id", "users.id", nullable=False, ondelete="CASCADE"),
            _ts("created_at"),
            sa.UniqueConstraint("post_id", "mentioned_user_id", name="uq_forum_mention"),
        )

    # --- SEPBook ---
    if "sepbook_posts" not in existing_tables:
        op.create_table(
            "sepbook_posts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("user_id", "users.id"),
            sa.Column("content", sa.Text(), nullable=False, server_default=""),
            sa.Column("attachments_json", sa.Text(), nullable=True),
            sa.Column("has_media", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("tags_json", sa.Text(), nullable=True),
            sa.Column("location_label", sa.String(255), nullable=True),
            sa.Column("location_lat", sa.Float(), nullable=True),
            sa.Column("location_lng", sa.Float(), nullable=True),
            sa.Column("like_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("comment_count", sa.Integer(), nullable=False, server_default="0"),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "sepbook_comments" not in existing_tables:
        op.create_table(
            "sepbook_comments",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("post_id", "sepbook_posts.id", nullable=False, ondelete="CASCADE"),
            _fk("user_id", "users.id"),
            sa.Column("content", sa.Text(), nullable=False),
            _ts("created_at"),
        )

    if "sepbook_likes" not in existing_tables:
        op.create_table(
            "sepbook_likes",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("post_id", "sepbook_posts.id", nullable=False, ondelete="CASCADE"),
            _fk("user_id", "users.id", nullable=False, ondelete="CASCADE"),
            _ts("created_at"),
            sa.UniqueConstraint("post_id", "user_id", name="uq_sepbook_like"),
        )

    if "sepbook_mentions" not in existing_tables:
        op.create_table(
            "sepbook_mentions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _fk("post_id", "sepbook_posts.id", nullable=False, ondelete="CASCADE"),
            _fk("comment_id", "sepbook_comments.id", ondelete="CASCADE"),
            _fk("mentioned_user_id", "users.id", nullable=False, ondelete="CASCADE"),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
        )

    for table, idx_name, cols in (
        ("finance_requests", "idx_finance_requests_created_by", ["created_by"]),
        ("finance_requests", "idx_finance_requests_status", ["status"]),
        ("finance_requests", "idx_finance_requests_date_start", ["date_start"]),
        ("forum_topics", "idx_forum_topics_status", ["status"]),
        ("forum_posts", "idx_forum_posts_topic", ["topic_id"]),
        ("sepbook_posts", "idx_sepbook_posts_created_at", ["created_at"]),
        ("sepbook_comments", "idx_sepbook_comments_post", ["post_id"]),
        ("sepbook_mentions", "idx_sepbook_mentions_user", ["mentioned_user_id", "is_read"]),
    ):
        if not _has_index(table, idx_name):
            op.create_index(idx_name, table, cols)


def downgrade() -> None:
    for table in (
        "sepbook_mentions",
        "sepbook_likes",
        "sepbook_comments",
        "sepbook_posts",
        "forum_mentions",
        "forum_post_likes",
        "forum_posts",
        "forum_topics",
        "finance_request_status_history",
        "finance_request_attachments",
        "finance_request_items",
        "finance_requests",
    ):
        op.drop_table(table)
