from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import SessionFactory, unit_of_work
from ..errors import NotFound, RaceConditionDetected
from ..metrics import miles_allocation_total, miles_expired_total, miles_granted_total, miles_idempotency_replay_total
from ..miles import Limited, MilesBalance, to_storage
from ..models import MembershipPlan, MembershipStatus, MembershipSubscription, TransactionType
from ..rollover import calculate_rollover
from .ledger import append_entry, find_entry_by_key, get_or_create_wallet


class AllocationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    RACE_CONDITION_DETECTED = "RACE_CONDITION_DETECTED"


@dataclass
class BillingEvent:
    invoice_id: str
    user_id: int
    plan_id: int
    period_end: datetime | None = None
    status: MembershipStatus = MembershipStatus.ACTIVE
    external_subscription_id: str | None = None
    external_customer_id: str | None = None


@dataclass
class AllocationResult:
    status: AllocationStatus
    wallet_id: int | None = None
    miles_added: int = 0
    expired_miles: int = 0
    balance: MilesBalance | None = None


def roll_in_key(invoice_id: str) -> str:
    return f"{invoice_id}:ROLL_IN"


class AllocationService:
    """Credits one billing period's miles exactly once per invoice."""

    def __init__(self, session_factory: SessionFactory, *, isolation_level: str | None = "SERIALIZABLE") -> None:
        self._session_factory = session_factory
        self._isolation_level = isolation_level

    async def allocate(self, event: BillingEvent) -> AllocationResult:
        log = logger.bind(invoice_id=event.invoice_id, user_id=event.user_id)
        try:
            async with unit_of_work(self._session_factory, self._isolation_level) as session:
                result = await self._allocate(session, event)
        except RaceConditionDetected as exc:
            # A concurrent delivery of the same event won; nothing here was committed.
            log.warning(f"miles.allocation.race_detected: {exc.detail}")
            miles_allocation_total.labels(result=AllocationStatus.RACE_CONDITION_DETECTED.value).inc()
            return AllocationResult(status=AllocationStatus.RACE_CONDITION_DETECTED)

        miles_allocation_total.labels(result=result.status.value).inc()
        if result.status == AllocationStatus.ALREADY_PROCESSED:
            miles_idempotency_replay_total.labels(operation="allocation").inc()
            log.info("miles.allocation.already_processed")
        else:
            miles_granted_total.inc(result.miles_added)
            miles_expired_total.inc(result.expired_miles)
            log.info(f"miles.allocation.success added={result.miles_added} expired={result.expired_miles}")
        return result

    async def _allocate(self, session: AsyncSession, event: BillingEvent) -> AllocationResult:
        plan = await session.get(MembershipPlan, event.plan_id)
        if plan is None:
            raise NotFound(f"Membership plan {event.plan_id} not found")

        await _upsert_membership(session, event)

        wallet = await get_or_create_wallet(session, event.user_id)
        key = roll_in_key(event.invoice_id)
        if await find_entry_by_key(session, wallet.id, key) is not None:
            return AllocationResult(
                status=AllocationStatus.ALREADY_PROCESSED,
                wallet_id=wallet.id,
                balance=wallet.balance,
            )

        rollover = calculate_rollover(wallet.balance, plan.rollover_cap_miles, plan.monthly_grant)
        bank = rollover.rollover_bank.miles if isinstance(rollover.rollover_bank, Limited) else 0

        await append_entry(
            session,
            wallet,
            TransactionType.ROLL_IN,
            0,
            f"{key} rolled={'unlimited' if rollover.unlimited else bank}",
            idempotency_key=key,
        )

        if not rollover.unlimited and rollover.expired_miles > 0:
            await append_entry(
                session,
                wallet,
                TransactionType.EXPIRE,
                -rollover.expired_miles,
                f"{event.invoice_id}:EXPIRE cap={plan.rollover_cap_miles}",
                idempotency_key=f"{event.invoice_id}:EXPIRE",
            )

        miles_added = 0
        grant = plan.monthly_grant
        if not rollover.unlimited and isinstance(grant, Limited) and grant.miles > 0:
            miles_added = grant.miles
            await append_entry(
                session,
                wallet,
                TransactionType.ADD_MONTHLY,
                grant.miles,
                f"{event.invoice_id}:ADD_MONTHLY plan={plan.name}",
                idempotency_key=f"{event.invoice_id}:ADD_MONTHLY",
            )

        wallet.balance_miles = to_storage(rollover.new_balance)
        wallet.rollover_bank_miles = bank
        await session.flush()

        return AllocationResult(
            status=AllocationStatus.SUCCESS,
            wallet_id=wallet.id,
            miles_added=miles_added,
            expired_miles=0 if rollover.unlimited else rollover.expired_miles,
            balance=rollover.new_balance,
        )


async def _upsert_membership(session: AsyncSession, event: BillingEvent) -> MembershipSubscription:
    membership = await session.scalar(
        select(MembershipSubscription).where(MembershipSubscription.user_id == event.user_id)
    )
    if membership is None:
        membership = MembershipSubscription(user_id=event.user_id)
        session.add(membership)
    membership.plan_id = event.plan_id
    membership.status = MembershipStatus(event.status).value
    membership.current_period_end = event.period_end
    if event.external_subscription_id:
        membership.external_subscription_id = event.external_subscription_id
    if event.external_customer_id:
        membership.external_customer_id = event.external_customer_id
    try:
        await session.flush()
    except IntegrityError as exc:
        raise RaceConditionDetected(f"Membership for user {event.user_id} was created concurrently") from exc
    return membership
