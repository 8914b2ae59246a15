from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import count

from sqlalchemy.exc import DBAPIError

from services.miles_service.app.models import MembershipPlan, Wallet
from services.miles_service.app.quote_engine import QuoteRequest
from services.miles_service.app.services import AllocationService, BillingEvent, reconcile_wallet
from services.miles_service.app.services.ledger import load_wallet

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

_plan_names = count(1)


def fixed_clock() -> datetime:
    return NOW


def job(travel_minutes: float = 50, hours_ahead: float = 2, **overrides) -> QuoteRequest:
    """A job priced at ``travel_minutes / 5`` miles when booked less than a day ahead."""
    return QuoteRequest(
        travel_minutes=travel_minutes,
        scheduled_start=NOW + timedelta(hours=hours_ahead),
        **overrides,
    )


class _DriverSerializationError(Exception):
    sqlstate = "40001"


def serialization_failure() -> DBAPIError:
    """What SQLAlchemy raises when Postgres aborts a SERIALIZABLE transaction."""
    return DBAPIError(
        "UPDATE wallets SET balance_miles=...",
        {},
        _DriverSerializationError("could not serialize access due to concurrent update"),
    )


async def create_plan(session_factory, **overrides) -> MembershipPlan:
    values = {
        "name": f"plan-{next(_plan_names)}",
        "monthly_service_miles": 60,
        "rollover_cap_miles": 40,
        "advance_discount_max": 0,
        "allowed_service_types": ["*"],
        "cash_allowed": True,
        "priority_level": 0,
    }
    values.update(overrides)
    async with session_factory() as session:
        plan = MembershipPlan(**values)
        session.add(plan)
        await session.commit()
        return plan


async def activate(session_factory, user_id: int, plan: MembershipPlan, invoice_id: str = "in_0001"):
    """Deliver one paid billing period for ``user_id`` on ``plan``."""
    service = AllocationService(session_factory)
    return await service.allocate(BillingEvent(invoice_id=invoice_id, user_id=user_id, plan_id=plan.id))


async def get_wallet(session_factory, user_id: int) -> Wallet | None:
    async with session_factory() as session:
        return await load_wallet(session, user_id)


async def assert_reconciled(session_factory, user_id: int) -> None:
    async with session_factory() as session:
        wallet = await load_wallet(session, user_id)
        assert wallet is not None
        result = await reconcile_wallet(session, wallet.id)
    assert result.consistent, f"balance {result.balance_miles} != ledger {result.ledger_sum}"
