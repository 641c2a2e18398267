from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class ForumTopic(Base):
    __tablename__ = "forum_topics"
    __table_args__ = (
        Index("idx_forum_topics_status", "status"),
    )

    id: Mapped[IntPK]
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    chas_dimension: Mapped[str] = mapped_column(String(1), nullable=False, default="C")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open")  # open|closed
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    closed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    posts: Mapped[list["ForumPost"]] = relationship(
        "ForumPost",
        back_populates="topic",
        cascade="all, delete-orphan",
        order_by="ForumPost.id",
        lazy="selectin",
    )


class ForumPost(Base):
    __tablename__ = "forum_posts"
    __table_args__ = (
        Index("idx_forum_posts_topic", "topic_id"),
    )

    id: Mapped[IntPK]
    topic_id: Mapped[int] = mapped_column(ForeignKey("forum_topics.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    parent_post_id: Mapped[int | None] = mapped_column(ForeignKey("forum_posts.id", ondelete="SET NULL"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachments_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    likes_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    topic: Mapped[ForumTopic] = relationship("ForumTopic", back_populates="posts", lazy="selectin")


class ForumPostLike(Base):
    __tablename__ = "forum_post_likes"
    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_forum_post_like"),
    )

    id: Mapped[IntPK]
    post_id: Mapped[int] = mapped_column(ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[CreatedAt]


class ForumMention(Base):
    __tablename__ = "forum_mentions"
    __table_args__ = (
        UniqueConstraint("post_id", "mentioned_user_id", name="uq_forum_mention"),
    )

    id: Mapped[IntPK]
    post_id: Mapped[int] = mapped_column(ForeignKey("forum_posts.id", ondelete="CASCADE"), nullable=False)
    mentioned_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[CreatedAt]
