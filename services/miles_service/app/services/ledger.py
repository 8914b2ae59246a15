from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, RaceConditionDetected
from ..models import LedgerEntry, TransactionType, Wallet


@dataclass
class Reconciliation:
    wallet_id: int
    balance_miles: int
    ledger_sum: int
    unlimited: bool

    @property
    def consistent(self) -> bool:
        return self.unlimited or self.balance_miles == self.ledger_sum


async def load_wallet(session: AsyncSession, user_id: int, *, lock: bool = False) -> Wallet | None:
    stmt = select(Wallet).where(Wallet.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    return await session.scalar(stmt)


async def get_or_create_wallet(session: AsyncSession, user_id: int) -> Wallet:
    """Return the user's wallet row locked for this transaction, creating it on first use."""
    wallet = await load_wallet(session, user_id, lock=True)
    if wallet is not None:
        return wallet
    wallet = Wallet(user_id=user_id, balance_miles=0, rollover_bank_miles=0)
    session.add(wallet)
    try:
        await session.flush()
    except IntegrityError as exc:
        logger.bind(user_id=user_id).warning("miles.wallet.concurrent_create")
        raise RaceConditionDetected(f"Wallet for user {user_id} was created concurrently") from exc
    logger.bind(user_id=user_id, wallet_id=wallet.id).info("miles.wallet.created")
    return wallet


async def find_entry_by_key(session: AsyncSession, wallet_id: int, idempotency_key: str) -> LedgerEntry | None:
    return await session.scalar(
        select(LedgerEntry)
        .where(LedgerEntry.wallet_id == wallet_id, LedgerEntry.idempotency_key == idempotency_key)
        .limit(1)
    )


async def append_entry(
    session: AsyncSession,
    wallet: Wallet,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    *,
    idempotency_key: str | None = None,
    related_request_id: int | None = None,
) -> LedgerEntry:
    entry = LedgerEntry(
        wallet_id=wallet.id,
        amount=amount,
        transaction_type=transaction_type.value,
        idempotency_key=idempotency_key,
        related_request_id=related_request_id,
        description=description,
    )
    session.add(entry)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceConditionDetected(f"Ledger key {idempotency_key} already written") from exc
    return entry


async def ledger_sum(session: AsyncSession, wallet_id: int) -> int:
    total = await session.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.wallet_id == wallet_id)
    )
    return int(total or 0)


async def reconcile_wallet(session: AsyncSession, wallet_id: int) -> Reconciliation:
    wallet = await session.get(Wallet, wallet_id, populate_existing=True)
    if wallet is None:
        raise NotFound(f"Wallet {wallet_id} not found")
    total = await ledger_sum(session, wallet_id)
    result = Reconciliation(
        wallet_id=wallet.id,
        balance_miles=wallet.balance_miles,
        ledger_sum=total,
        unlimited=wallet.is_unlimited,
    )
    if not result.consistent:
        logger.bind(wallet_id=wallet_id).error(
            f"miles.ledger.drift balance={wallet.balance_miles} ledger_sum={total}"
        )
    return result


async def list_entries(
    session: AsyncSession,
    wallet_id: int,
    *,
    limit: int = 50,
    cursor: int | None = None,
) -> tuple[list[LedgerEntry], int | None]:
    """Newest-first page of entries; the cursor is the last id already seen."""
    stmt = select(LedgerEntry).where(LedgerEntry.wallet_id == wallet_id)
    if cursor is not None:
        stmt = stmt.where(LedgerEntry.id < cursor)
    stmt = stmt.order_by(LedgerEntry.id.desc()).limit(limit + 1)
    rows = list(await session.scalars(stmt))
    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].id
    return rows, next_cursor
