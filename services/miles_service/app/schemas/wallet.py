from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class WalletResponse(BaseModel):
    """Read model handed to clients; ``balance_miles`` is 0 when ``unlimited``."""

    wallet_id: int | None
    balance_miles: int
    rollover_bank_miles: int
    unlimited: bool


class LedgerEntryResponse(BaseModel):
    id: int
    amount: int
    transaction_type: str
    idempotency_key: str | None = None
    related_request_id: int | None = None
    description: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StatementResponse(BaseModel):
    wallet_id: int | None
    entries: list[LedgerEntryResponse]
    next_cursor: int | None = None
