from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.miles_service.app.db.base import TimestampedModel
from services.miles_service.app.miles import UNLIMITED_SENTINEL, MilesBalance, from_storage


class Wallet(TimestampedModel):
    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint(
            f"balance_miles >= 0 OR balance_miles = {UNLIMITED_SENTINEL}",
            name="ck_wallet_balance_non_negative",
        ),
    )

    user_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    # Stored, authoritative projection of the ledger; -1 means unlimited
    balance_miles: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    rollover_bank_miles: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    entries = relationship(
        "LedgerEntry",
        back_populates="wallet",
        lazy="raise",
        order_by="LedgerEntry.id",
    )

    @property
    def balance(self) -> MilesBalance:
        return from_storage(self.balance_miles)

    @property
    def is_unlimited(self) -> bool:
        return self.balance_miles == UNLIMITED_SENTINEL
