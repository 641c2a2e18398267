from __future__ import annotations

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class SepbookPost(Base):
    __tablename__ = "sepbook_posts"
    __table_args__ = (
        Index("idx_sepbook_posts_created_at", "created_at"),
    )

    id: Mapped[IntPK]
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    has_media: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    location_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]


class SepbookComment(Base):
    __tablename__ = "sepbook_comments"
    __table_args__ = (
        Index("idx_sepbook_comments_post", "post_id"),
    )

    id: Mapped[IntPK]
    post_id: Mapped[int] = mapped_column(ForeignKey("sepbook_posts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[CreatedAt]


class SepbookLike(Base):
    __tablename__ = "sepbook_likes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_sepbook_like"),
    )

    id: Mapped[IntPK]
    post_id: Mapped[int] = mapped_column(ForeignKey("sepbook_posts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[CreatedAt]


class SepbookMention(Base):
    __tablename__ = "sepbook_mentions"
    __table_args__ = (
        Index("idx_sepbook_mentions_user", "mentioned_user_id", "is_read"),
    )

    id: Mapped[IntPK]
    post_id: Mapped[int] = mapped_column(ForeignKey("sepbook_posts.id", ondelete="CASCADE"), nullable=False)
    comment_id: Mapped[int | None] = mapped_column(ForeignKey("sepbook_comments.id", ondelete="CASCADE"), nullable=True)
    mentioned_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[CreatedAt]
