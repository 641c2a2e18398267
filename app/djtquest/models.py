from __future__ import annotations

from datetime import date, datetime
from typing import Annotated

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

IntPK = Annotated[int, mapped_column(Integer, primary_key=True)]
CreatedAt = Annotated[datetime, mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)]
UpdatedAt = Annotated[
    datetime,
    mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
]


class Base(DeclarativeBase):
    pass


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
)

role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    """
    Login account and player profile in one row.
    Org fields hold siglas (e.g. team "DJTB-CUB", coord "DJTB-CUB", division "DJTB").
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_team_id", "team_id"),
        Index("idx_users_xp", "xp"),
    )

    id: Mapped[IntPK]
    email: Mapped[str] = mapped_column(String(320), unique=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(255))
    matricula: Mapped[str | None] = mapped_column(String(32), unique=True)
    phone: Mapped[str | None] = mapped_column(String(32))
    date_of_birth: Mapped[date | None] = mapped_column(Date)

    team_id: Mapped[str | None] = mapped_column(String(64))
    coord_id: Mapped[str | None] = mapped_column(String(64))
    division_id: Mapped[str | None] = mapped_column(String(64))
    operational_base: Mapped[str | None] = mapped_column(String(128))

    xp: Mapped[int] = mapped_column(default=0)
    tier: Mapped[str] = mapped_column(String(8), default="EX-1")

    is_leader: Mapped[bool] = mapped_column(Boolean, default=False)
    studio_access: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    must_change_password: Mapped[bool] = mapped_column(Boolean, default=False)
    needs_profile_completion: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    roles: Mapped[list[Role]] = relationship(secondary=user_roles, back_populates="users", lazy="selectin")

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@", 1)[0]


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[IntPK]
    key: Mapped[str] = mapped_column(String(64), unique=True)  # "coordenador_djtx"
    name: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[CreatedAt]

    users: Mapped[list[User]] = relationship(secondary=user_roles, back_populates="roles", lazy="selectin")
    permissions: Mapped[list[Permission]] = relationship(
        secondary=role_permissions, back_populates="roles", lazy="selectin"
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[IntPK]
    key: Mapped[str] = mapped_column(String(128), unique=True)  # "registrations.review"
    name: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[CreatedAt]

    roles: Mapped[list[Role]] = relationship(secondary=role_permissions, back_populates="permissions", lazy="selectin")


class AuditEvent(Base):
    """
    Who did what to which entity. Rows are never updated; module rows are referenced
    loosely through entity_type/entity_id so deleting them keeps the trail.
    """

    __tablename__ = "audit_events"
    __table_args__ = (Index("idx_audit_events_entity", "entity_type", "entity_id"),)

    id: Mapped[IntPK]
    created_at: Mapped[CreatedAt]
    request_id: Mapped[str | None] = mapped_column(String(64))
    client_ip: Mapped[str | None] = mapped_column(String(64))

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    actor_user_email: Mapped[str | None] = mapped_column(String(320))

    action: Mapped[str] = mapped_column(String(128))  # "quiz.publish"
    entity_type: Mapped[str | None] = mapped_column(String(128))
    entity_id: Mapped[str | None] = mapped_column(String(128))
    reason: Mapped[str | None] = mapped_column(String(512))
    metadata_json: Mapped[str | None] = mapped_column(Text)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("idx_notifications_user_read", "user_id", "read_at"),)

    id: Mapped[IntPK]
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    type: Mapped[str] = mapped_column(String(64))  # "quiz_completed", "forum_mention"
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str | None] = mapped_column(Text)
    metadata_json: Mapped[str | None] = mapped_column(Text)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False))
    created_at: Mapped[CreatedAt]


# Module models register their tables on Base.metadata; imported last to avoid cycles.
from app.djtquest.modules.quiz.models import (  # noqa: E402,F401
    Challenge,
    QuizAttempt,
    QuizCurationComment,
    QuizOption,
    QuizQuestion,
    QuizVersion,
    UserQuizAnswer,
)
from app.djtquest.modules.finance.models import (  # noqa: E402,F401
    FinanceRequest,
    FinanceRequestAttachment,
    FinanceRequestItem,
    FinanceRequestStatusHistory,
)
from app.djtquest.modules.registration.models import PendingRegistration  # noqa: E402,F401
from app.djtquest.modules.forum.models import ForumMention, ForumPost, ForumPostLike, ForumTopic  # noqa: E402,F401
from app.djtquest.modules.sepbook.models import (  # noqa: E402,F401
    SepbookComment,
    SepbookLike,
    SepbookMention,
    SepbookPost,
)
from app.djtquest.modules.gamification.models import TierProgressionRequest  # noqa: E402,F401
