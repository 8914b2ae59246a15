from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.miles_service.app.db.base import Base


class TransactionType(str, Enum):
    ADD_MONTHLY = "ADD_MONTHLY"
    ROLL_IN = "ROLL_IN"
    EXPIRE = "EXPIRE"
    DEDUCT_REQUEST = "DEDUCT_REQUEST"
    ADJUST = "ADJUST"


class LedgerEntry(Base):
    """Append-only miles movement. Rows are never updated or deleted."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        Index("ix_ledger_wallet_created", "wallet_id", "created_at"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id"), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    # Unique across the table: the replay guard for external events
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True, default=None)
    related_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("delivery_requests.id"), index=True, nullable=True, default=None
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    wallet = relationship("Wallet", back_populates="entries")
