from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.djtquest.models import Base, CreatedAt, IntPK, UpdatedAt


class FinanceRequest(Base):
    __tablename__ = "finance_requests"
    __table_args__ = (
        Index("idx_finance_requests_created_by", "created_by"),
        Index("idx_finance_requests_status", "status"),
        Index("idx_finance_requests_date_start", "date_start"),
    )

    id: Mapped[IntPK]
    protocol: Mapped[str | None] = mapped_column(String(32), nullable=True, unique=True)  # FIN-YYYYMMDD-000123

    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_by_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    created_by_matricula: Mapped[str | None] = mapped_column(String(80), nullable=True)

    company: Mapped[str] = mapped_column(String(64), nullable=False)
    training_operational: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    request_kind: Mapped[str] = mapped_column(String(32), nullable=False)  # Reembolso | Adiantamento
    expense_type: Mapped[str] = mapped_column(String(64), nullable=False)
    coordination: Mapped[str] = mapped_column(String(64), nullable=False)
    date_start: Mapped[date] = mapped_column(Date, nullable=False)
    date_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL")

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Enviado")
    last_observation: Mapped[str | None] = mapped_column(Text, nullable=True)
    analyst_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    items: Mapped[list["FinanceRequestItem"]] = relationship(
        "FinanceRequestItem",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="FinanceRequestItem.idx",
        lazy="selectin",
    )
    attachments: Mapped[list["FinanceRequestAttachment"]] = relationship(
        "FinanceRequestAttachment",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    history: Mapped[list["FinanceRequestStatusHistory"]] = relationship(
        "FinanceRequestStatusHistory",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="FinanceRequestStatusHistory.id",
        lazy="selectin",
    )


class FinanceRequestItem(Base):
    __tablename__ = "finance_request_items"

    id: Mapped[IntPK]
    request_id: Mapped[int] = mapped_column(ForeignKey("finance_requests.id", ondelete="CASCADE"), nullable=False)
    idx: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expense_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    request: Mapped[FinanceRequest] = relationship("FinanceRequest", back_populates="items", lazy="selectin")


class FinanceRequestAttachment(Base):
    __tablename__ = "finance_request_attachments"

    id: Mapped[IntPK]
    request_id: Mapped[int] = mapped_column(ForeignKey("finance_requests.id", ondelete="CASCADE"), nullable=False)
    item_id: Mapped[int | None] = mapped_column(ForeignKey("finance_request_items.id", ondelete="SET NULL"), nullable=True)
    uploaded_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    storage_key: Mapped[str] = mapped_column(String(600), nullable=False)
    filename: Mapped[str | None] = mapped_column(String(240), nullable=True)
    content_type: Mapped[str | None] = mapped_column(String(120), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[CreatedAt]

    request: Mapped[FinanceRequest] = relationship("FinanceRequest", back_populates="attachments", lazy="selectin")


class FinanceRequestStatusHistory(Base):
    __tablename__ = "finance_request_status_history"

    id: Mapped[IntPK]
    request_id: Mapped[int] = mapped_column(ForeignKey("finance_requests.id", ondelete="CASCADE"), nullable=False)
    changed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    from_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    observation: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[CreatedAt]

    request: Mapped[FinanceRequest] = relationship("FinanceRequest", back_populates="history", lazy="selectin")
