from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class Challenge(Base):
    """
    A challenge of any type. Quizzes additionally carry a curation workflow status
    (DRAFT -> SUBMITTED -> APPROVED/REJECTED -> PUBLISHED) and own questions.
    """

    __tablename__ = "challenges"
    __table_args__ = (
        Index("idx_challenges_type", "type"),
        Index("idx_challenges_workflow", "quiz_workflow_status"),
    )

    id: Mapped[IntPK]
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="quiz")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")  # active|closed|canceled

    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="fixed_xp")  # fixed_xp|tier_steps
    reward_tier_steps: Mapped[int | None] = mapped_column(Integer, nullable=True)

    campaign_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    theme: Mapped[str | None] = mapped_column(String(128), nullable=True)
    chas_dimension: Mapped[str] = mapped_column(String(1), nullable=False, default="C")

    quiz_workflow_status: Mapped[str] = mapped_column(String(16), nullable=False, default="DRAFT")
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    published_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    questions: Mapped[list["QuizQuestion"]] = relationship(
        "QuizQuestion",
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.order_index",
        lazy="selectin",
    )


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"
    __table_args__ = (
        Index("idx_quiz_questions_challenge", "challenge_id", "order_index"),
    )

    id: Mapped[IntPK]
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty_level: Mapped[str] = mapped_column(String(32), nullable=False, default="basica")
    xp_value: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[CreatedAt]

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="questions", lazy="selectin")
    options: Mapped[list["QuizOption"]] = relationship(
        "QuizOption",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuizOption.id",
        lazy="selectin",
    )


class QuizOption(Base):
    __tablename__ = "quiz_options"

    id: Mapped[IntPK]
    question_id: Mapped[int] = mapped_column(ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False)
    option_text: Mapped[str] = mapped_column(String(255), nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    question: Mapped[QuizQuestion] = relationship("QuizQuestion", back_populates="options", lazy="selectin")


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_quiz_attempt_user_challenge"),
    )

    id: Mapped[IntPK]
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    help_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skip_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Milhão: the XP total the ladder is scaled to, fixed at first answer.
    reward_total_xp_target: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Milhão: best run total already credited to the profile.
    best_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ended_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)  # completed|wrong


class UserQuizAnswer(Base):
    __tablename__ = "user_quiz_answers"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_user_quiz_answer"),
        Index("idx_user_quiz_answers_challenge", "user_id", "challenge_id"),
    )

    id: Mapped[IntPK]
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False)
    selected_option_id: Mapped[int | None] = mapped_column(ForeignKey("quiz_options.id", ondelete="SET NULL"), nullable=True)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    used_help: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    answered_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class QuizVersion(Base):
    __tablename__ = "quiz_versions"
    __table_args__ = (
        UniqueConstraint("challenge_id", "version_number", name="uq_quiz_version"),
    )

    id: Mapped[IntPK]
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    snapshot_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[CreatedAt]


class QuizCurationComment(Base):
    __tablename__ = "quiz_curation_comments"

    id: Mapped[IntPK]
    challenge_id: Mapped[int] = mapped_column(ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False)
    author_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False, default="review")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[CreatedAt]
