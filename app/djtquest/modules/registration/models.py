from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class PendingRegistration(Base):
    __tablename__ = "pending_registrations"
    __table_args__ = (
        Index("idx_pending_registrations_status", "status"),
        Index("idx_pending_registrations_email", "email"),
    )

    id: Mapped[IntPK]
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    matricula: Mapped[str | None] = mapped_column(String(32), nullable=True)
    telefone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sigla_area: Mapped[str | None] = mapped_column(String(64), nullable=True)
    operational_base: Mapped[str | None] = mapped_column(String(128), nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")  # pending|approved|rejected
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]
