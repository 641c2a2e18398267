"""initial schema: accounts, audit, notifications, registrations

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-01

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)
    existing_tables = set(insp.get_table_names())

    def _has_index(table: str, name: str) -> bool:
        try:
            return any(ix.get("name") == name for ix in inspect(op.get_bind()).get_indexes(table))
        except Exception:
            return False

    def _ensure_indexes(table: str, indexes) -> None:
        for idx_name, cols in indexes:
            if not _has_index(table, idx_name):
                op.create_index(idx_name, table, cols)

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("matricula", sa.String(32), nullable=True),
            sa.Column("phone", sa.String(32), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("team_id", sa.String(64), nullable=True),
            sa.Column("coord_id", sa.String(64), nullable=True),
            sa.Column("division_id", sa.String(64), nullable=True),
            sa.Column("operational_base", sa.String(128), nullable=True),
            sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("tier", sa.String(8), nullable=False, server_default="EX-1"),
            sa.Column("is_leader", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("studio_access", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("needs_profile_completion", sa.Boolean(), nullable=False, server_default=sa.false()),
            _created_at(),
            _updated_at(),
            sa.UniqueConstraint("email", name="uq_users_email"),
            sa.UniqueConstraint("matricula", name="uq_users_matricula"),
        )
    _ensure_indexes("users", (("idx_users_team_id", ["team_id"]), ("idx_users_xp", ["xp"])))

    if "roles" not in existing_tables:
        op.create_table(
            "roles",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(64), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            _created_at(),
            sa.UniqueConstraint("key", name="uq_roles_key"),
        )

    if "permissions" not in existing_tables:
        op.create_table(
            "permissions",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("key", sa.String(128), nullable=False),
            sa.Column("name", sa.String(128), nullable=False),
            _created_at(),
            sa.UniqueConstraint("key", name="uq_permissions_key"),
        )

    if "user_roles" not in existing_tables:
        op.create_table(
            "user_roles",
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        )

    if "role_permissions" not in existing_tables:
        op.create_table(
            "role_permissions",
            sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
            sa.Column(
                "permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True
            ),
        )

    if "audit_events" not in existing_tables:
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            _created_at(),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("client_ip", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_user_email", sa.String(320), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("reason", sa.String(512), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
    _ensure_indexes("audit_events", (("idx_audit_events_entity", ["entity_type", "entity_id"]),))

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("type", sa.String(64), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=False), nullable=True),
            _created_at(),
        )
    _ensure_indexes("notifications", (("idx_notifications_user_read", ["user_id", "read_at"]),))

    if "pending_registrations" not in existing_tables:
        op.create_table(
            "pending_registrations",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False),
            sa.Column("matricula", sa.String(32), nullable=True),
            sa.Column("telefone", sa.String(32), nullable=True),
            sa.Column("sigla_area", sa.String(64), nullable=True),
            sa.Column("operational_base", sa.String(128), nullable=True),
            sa.Column("date_of_birth", sa.Date(), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
            sa.Column("review_notes", sa.Text(), nullable=True),
            sa.Column("created_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _created_at(),
            _updated_at(),
        )
    _ensure_indexes(
        "pending_registrations",
        (
            ("idx_pending_registrations_status", ["status"]),
            ("idx_pending_registrations_email", ["email"]),
        ),
    )


def downgrade() -> None:
    for table in (
        "pending_registrations",
        "notifications",
        "audit_events",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
