from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select

from services.miles_service.app.dependencies import SessionDep, get_current_user_id
from services.miles_service.app.miles import Limited
from services.miles_service.app.models import MembershipSubscription
from services.miles_service.app.schemas import LedgerEntryResponse, StatementResponse, WalletResponse
from services.miles_service.app.services.ledger import list_entries, load_wallet

router = APIRouter()

CurrentUserDep = Annotated[int, Depends(get_current_user_id)]


@router.get("", response_model=WalletResponse)
async def get_wallet(session: SessionDep, current_user_id: CurrentUserDep) -> WalletResponse:
    wallet = await load_wallet(session, current_user_id)
    membership = await session.scalar(
        select(MembershipSubscription).where(MembershipSubscription.user_id == current_user_id)
    )
    plan_unlimited = bool(membership and membership.is_active and membership.plan and membership.plan.is_unlimited)
    if wallet is None:
        return WalletResponse(wallet_id=None, balance_miles=0, rollover_bank_miles=0, unlimited=plan_unlimited)

    balance = wallet.balance
    unlimited = balance.unlimited or plan_unlimited
    return WalletResponse(
        wallet_id=wallet.id,
        balance_miles=balance.miles if isinstance(balance, Limited) and not unlimited else 0,
        rollover_bank_miles=0 if unlimited else wallet.rollover_bank_miles,
        unlimited=unlimited,
    )


@router.get("/ledger", response_model=StatementResponse)
async def get_ledger(
    session: SessionDep,
    current_user_id: CurrentUserDep,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    cursor: Annotated[int | None, Query(ge=1)] = None,
) -> StatementResponse:
    wallet = await load_wallet(session, current_user_id)
    if wallet is None:
        return StatementResponse(wallet_id=None, entries=[])
    rows, next_cursor = await list_entries(session, wallet.id, limit=limit, cursor=cursor)
    return StatementResponse(
        wallet_id=wallet.id,
        entries=[LedgerEntryResponse.model_validate(row) for row in rows],
        next_cursor=next_cursor,
    )
