from __future__ import annotations

import pytest
from sqlalchemy import select, update

from services.miles_service.app.errors import CompletedRequestsImmutable, NotFound, RaceConditionDetected
from services.miles_service.app.models import DeliveryRequest, DeliveryRequestStatus, LedgerEntry, TransactionType
from services.miles_service.app.services import (
    CancellationService,
    CancellationStage,
    ConsumptionService,
    JobSubmission,
)
from services.miles_service.tests.helpers import (
    NOW,
    activate,
    assert_reconciled,
    create_plan,
    fixed_clock,
    get_wallet,
    job,
    serialization_failure,
)


async def _paid_request(session_factory, user_id: int = 5, monthly_miles: int = 60, **submission) -> int:
    """Activate a plan and submit a 10-mile job; returns the request id."""
    plan = await create_plan(session_factory, monthly_service_miles=monthly_miles)
    await activate(session_factory, user_id=user_id, plan=plan)
    result = await ConsumptionService(session_factory, clock=fixed_clock).submit(
        JobSubmission(user_id=user_id, service_type="courier", job=job(travel_minutes=50), **submission)
    )
    return result.request.id


async def _set(session_factory, request_id: int, **values) -> None:
    async with session_factory() as session:
        await session.execute(update(DeliveryRequest).where(DeliveryRequest.id == request_id).values(**values))
        await session.commit()


async def _load(session_factory, request_id: int) -> DeliveryRequest:
    async with session_factory() as session:
        return await session.get(DeliveryRequest, request_id)


def _service(session_factory) -> CancellationService:
    return CancellationService(session_factory, clock=fixed_clock)


@pytest.mark.asyncio
async def test_cancel_before_assignment_refunds_everything(session_factory):
    request_id = await _paid_request(session_factory)

    outcome = await _service(session_factory).cancel(request_id, user_id=5)

    assert outcome.stage == CancellationStage.UNASSIGNED
    assert outcome.fee_miles == 0
    assert outcome.refund_miles == 10
    assert (await get_wallet(session_factory, 5)).balance_miles == 60
    request = await _load(session_factory, request_id)
    assert request.status == DeliveryRequestStatus.CANCELED.value
    assert request.refunded_miles == 10
    assert request.cancellation_fee_miles == 0
    assert request.canceled_at is not None

    async with session_factory() as session:
        refund = await session.scalar(
            select(LedgerEntry).where(LedgerEntry.transaction_type == TransactionType.ADJUST.value)
        )
    assert refund.amount == 10
    assert refund.idempotency_key == f"request:{request_id}:CANCEL_REFUND"
    assert refund.description == f"Cancellation refund for request {request_id} (fee: 0 miles)"
    await assert_reconciled(session_factory, 5)


@pytest.mark.asyncio
async def test_cancel_after_assignment_keeps_assignment_fee(session_factory):
    request_id = await _paid_request(session_factory)
    await _set(session_factory, request_id, status=DeliveryRequestStatus.ASSIGNED.value, assigned_driver_id=77)

    outcome = await _service(session_factory).cancel(request_id, user_id=5)

    assert outcome.stage == CancellationStage.ASSIGNED
    assert outcome.fee_miles == 5
    assert outcome.refund_miles == 5
    assert (await get_wallet(session_factory, 5)).balance_miles == 55
    await assert_reconciled(session_factory, 5)


@pytest.mark.asyncio
async def test_cancel_after_arrival_refunds_nothing(session_factory):
    request_id = await _paid_request(session_factory)
    await _set(session_factory, request_id, status=DeliveryRequestStatus.PICKED_UP.value, arrived_at=NOW)

    outcome = await _service(session_factory).cancel(request_id, user_id=5)

    assert outcome.stage == CancellationStage.ARRIVED
    assert outcome.fee_miles == 15
    assert outcome.refund_miles == 0
    assert (await get_wallet(session_factory, 5)).balance_miles == 50
    async with session_factory() as session:
        refunds = list(
            await session.scalars(
                select(LedgerEntry).where(LedgerEntry.transaction_type == TransactionType.ADJUST.value)
            )
        )
    assert refunds == []
    assert (await _load(session_factory, request_id)).refunded_miles == 0
    await assert_reconciled(session_factory, 5)


@pytest.mark.asyncio
async def test_second_cancel_is_a_no_op(session_factory):
    request_id = await _paid_request(session_factory)
    service = _service(session_factory)

    await service.cancel(request_id, user_id=5)
    again = await service.cancel(request_id, user_id=5)

    assert again.already_canceled
    assert again.refund_miles == 0
    assert (await get_wallet(session_factory, 5)).balance_miles == 60
    await assert_reconciled(session_factory, 5)


@pytest.mark.asyncio
async def test_delivered_request_cannot_be_canceled(session_factory):
    request_id = await _paid_request(session_factory)
    await _set(session_factory, request_id, status=DeliveryRequestStatus.DELIVERED.value, arrived_at=NOW)

    with pytest.raises(CompletedRequestsImmutable):
        await _service(session_factory).cancel(request_id, user_id=5)

    assert (await _load(session_factory, request_id)).status == DeliveryRequestStatus.DELIVERED.value
    assert (await get_wallet(session_factory, 5)).balance_miles == 50


@pytest.mark.asyncio
async def test_cancel_is_scoped_to_the_owner(session_factory):
    request_id = await _paid_request(session_factory)

    with pytest.raises(NotFound):
        await _service(session_factory).cancel(request_id, user_id=6)
    with pytest.raises(NotFound):
        await _service(session_factory).cancel(9999, user_id=5)


@pytest.mark.asyncio
async def test_unpaid_request_cancels_without_refund(session_factory):
    request_id = await _paid_request(session_factory, pay_with_miles=False)

    outcome = await _service(session_factory).cancel(request_id, user_id=5)

    assert not outcome.already_canceled
    assert outcome.refund_miles == 0
    assert (await get_wallet(session_factory, 5)).balance_miles == 60


@pytest.mark.asyncio
async def test_unlimited_wallet_gets_no_refund_entry(session_factory):
    request_id = await _paid_request(session_factory, monthly_miles=-1)

    outcome = await _service(session_factory).cancel(request_id, user_id=5)

    assert outcome.refund_miles == 0
    assert (await get_wallet(session_factory, 5)).is_unlimited
    assert (await _load(session_factory, request_id)).status == DeliveryRequestStatus.CANCELED.value


def _abort_after(action):
    """Stand-in for ``_cancel`` that runs ``action`` to completion, then aborts like Postgres does."""

    async def _cancel(session, request_id, user_id):
        await action(request_id, user_id)
        raise serialization_failure()

    return _cancel


@pytest.mark.asyncio
async def test_serialization_failure_after_concurrent_cancel_is_already_canceled(session_factory, monkeypatch):
    request_id = await _paid_request(session_factory)
    loser = _service(session_factory)
    monkeypatch.setattr(loser, "_cancel", _abort_after(_service(session_factory).cancel))

    outcome = await loser.cancel(request_id, user_id=5)

    assert outcome.already_canceled
    assert outcome.refund_miles == 0
    assert (await get_wallet(session_factory, 5)).balance_miles == 60
    async with session_factory() as session:
        refunds = list(
            await session.scalars(
                select(LedgerEntry).where(LedgerEntry.transaction_type == TransactionType.ADJUST.value)
            )
        )
    assert len(refunds) == 1
    await assert_reconciled(session_factory, 5)


@pytest.mark.asyncio
async def test_serialization_failure_after_delivery_is_immutable(session_factory, monkeypatch):
    request_id = await _paid_request(session_factory)
    loser = _service(session_factory)

    async def _deliver(request_id, user_id):
        await _set(session_factory, request_id, status=DeliveryRequestStatus.DELIVERED.value, arrived_at=NOW)

    monkeypatch.setattr(loser, "_cancel", _abort_after(_deliver))

    with pytest.raises(CompletedRequestsImmutable):
        await loser.cancel(request_id, user_id=5)

    assert (await get_wallet(session_factory, 5)).balance_miles == 50


@pytest.mark.asyncio
async def test_serialization_failure_on_open_request_stays_a_race(session_factory, monkeypatch):
    request_id = await _paid_request(session_factory)
    loser = _service(session_factory)

    async def _nothing(request_id, user_id):
        return None

    monkeypatch.setattr(loser, "_cancel", _abort_after(_nothing))

    with pytest.raises(RaceConditionDetected):
        await loser.cancel(request_id, user_id=5)

    assert (await _load(session_factory, request_id)).status == DeliveryRequestStatus.REQUESTED.value
    assert (await get_wallet(session_factory, 5)).balance_miles == 50
