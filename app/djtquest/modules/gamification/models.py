from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class TierProgressionRequest(Base):
    """A level-5 player asking to move to the next track (EX -> FO -> GU)."""

    __tablename__ = "tier_progression_requests"
    __table_args__ = (
        Index("idx_tier_progression_requests_status", "status"),
        Index("idx_tier_progression_requests_user", "user_id"),
    )

    id: Mapped[IntPK]
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    current_tier: Mapped[str] = mapped_column(String(8), nullable=False)
    target_tier: Mapped[str] = mapped_column(String(8), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending|approved|rejected
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]
