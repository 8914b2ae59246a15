from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import SessionFactory, unit_of_work
from ..errors import CompletedRequestsImmutable, NotFound, TransactionConflict
from ..metrics import miles_cancellation_total, miles_idempotency_replay_total, miles_refunded_total
from ..miles import MilesBalance
from ..models import DeliveryRequest, DeliveryRequestStatus, TransactionType, Wallet
from .ledger import append_entry, load_wallet

ASSIGNED_FEE_MILES = 5
ARRIVED_FEE_MILES = 15

ARRIVED_STATUSES = frozenset(
    {
        DeliveryRequestStatus.PICKED_UP.value,
        DeliveryRequestStatus.EN_ROUTE.value,
        DeliveryRequestStatus.DELIVERED.value,
    }
)


class CancellationStage(str, Enum):
    UNASSIGNED = "UNASSIGNED"
    ASSIGNED = "ASSIGNED"
    ARRIVED = "ARRIVED"


STAGE_FEES = {
    CancellationStage.UNASSIGNED: 0,
    CancellationStage.ASSIGNED: ASSIGNED_FEE_MILES,
    CancellationStage.ARRIVED: ARRIVED_FEE_MILES,
}


@dataclass
class CancellationOutcome:
    request_id: int
    already_canceled: bool
    refund_miles: int = 0
    fee_miles: int = 0
    stage: CancellationStage | None = None
    balance: MilesBalance | None = None


def classify_stage(request: DeliveryRequest) -> CancellationStage:
    if request.arrived_at is not None or request.status in ARRIVED_STATUSES:
        return CancellationStage.ARRIVED
    if request.assigned_driver_id is not None or request.status == DeliveryRequestStatus.ASSIGNED.value:
        return CancellationStage.ASSIGNED
    return CancellationStage.UNASSIGNED


def cancellation_terms(stage: CancellationStage, paid_miles: int) -> tuple[int, int]:
    """Return ``(fee, refund)`` for the stage; the refund never goes negative."""
    fee = STAGE_FEES[stage]
    return fee, max(0, paid_miles - fee)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CancellationService:
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        isolation_level: str | None = "SERIALIZABLE",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._isolation_level = isolation_level
        self._clock = clock

    async def cancel(self, request_id: int, user_id: int) -> CancellationOutcome:
        log = logger.bind(request_id=request_id, user_id=user_id)
        try:
            async with unit_of_work(self._session_factory, self._isolation_level) as session:
                outcome = await self._cancel(session, request_id, user_id)
        except TransactionConflict:
            outcome = await self._after_conflict(request_id, user_id)
            if outcome is None:
                raise

        if outcome.already_canceled:
            miles_idempotency_replay_total.labels(operation="cancellation").inc()
            log.info("miles.cancellation.already_canceled")
        else:
            miles_cancellation_total.labels(stage=outcome.stage.value).inc()
            miles_refunded_total.inc(outcome.refund_miles)
            log.info(
                f"miles.cancellation.canceled stage={outcome.stage.value} "
                f"fee={outcome.fee_miles} refund={outcome.refund_miles}"
            )
        return outcome

    async def _after_conflict(self, request_id: int, user_id: int) -> CancellationOutcome | None:
        """Report the state a concurrent transition left behind; ``None`` if the request is still open."""
        async with self._session_factory() as session:
            request = await session.scalar(
                select(DeliveryRequest).where(DeliveryRequest.id == request_id, DeliveryRequest.user_id == user_id)
            )
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        if request.status == DeliveryRequestStatus.DELIVERED.value:
            raise CompletedRequestsImmutable("Delivered requests cannot be canceled")
        if request.status == DeliveryRequestStatus.CANCELED.value:
            return CancellationOutcome(request_id=request.id, already_canceled=True)
        return None

    async def _cancel(self, session: AsyncSession, request_id: int, user_id: int) -> CancellationOutcome:
        request = await session.scalar(
            select(DeliveryRequest).where(DeliveryRequest.id == request_id, DeliveryRequest.user_id == user_id)
        )
        if request is None:
            raise NotFound(f"Request {request_id} not found")
        if request.status == DeliveryRequestStatus.DELIVERED.value:
            raise CompletedRequestsImmutable("Delivered requests cannot be canceled")
        if request.status == DeliveryRequestStatus.CANCELED.value:
            return CancellationOutcome(request_id=request.id, already_canceled=True)

        stage = classify_stage(request)
        paid = request.paid_miles
        fee, refund = cancellation_terms(stage, paid)

        transitioned = await session.execute(
            update(DeliveryRequest)
            .where(
                DeliveryRequest.id == request.id,
                DeliveryRequest.status.notin_(
                    [DeliveryRequestStatus.CANCELED.value, DeliveryRequestStatus.DELIVERED.value]
                ),
            )
            .values(
                status=DeliveryRequestStatus.CANCELED.value,
                canceled_at=self._clock(),
                cancellation_fee_miles=fee,
            )
            .execution_options(synchronize_session=False)
        )
        await session.refresh(request)
        if transitioned.rowcount == 0:
            # Lost to a concurrent transition; report whichever state won.
            if request.status == DeliveryRequestStatus.DELIVERED.value:
                raise CompletedRequestsImmutable("Delivered requests cannot be canceled")
            return CancellationOutcome(request_id=request.id, already_canceled=True)

        outcome = CancellationOutcome(
            request_id=request.id,
            already_canceled=False,
            fee_miles=fee,
            stage=stage,
        )
        if paid > 0:
            outcome.refund_miles, outcome.balance = await _refund(session, request, user_id, refund, fee)
        request.refunded_miles = outcome.refund_miles
        await session.flush()
        return outcome


async def _refund(
    session: AsyncSession, request: DeliveryRequest, user_id: int, refund: int, fee: int
) -> tuple[int, MilesBalance]:
    wallet = await load_wallet(session, user_id, lock=True)
    if wallet is None:
        raise NotFound(f"Wallet for user {user_id} not found")
    if wallet.is_unlimited or refund <= 0:
        return 0, wallet.balance

    await session.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id)
        .values(balance_miles=Wallet.balance_miles + refund)
        .execution_options(synchronize_session=False)
    )
    await append_entry(
        session,
        wallet,
        TransactionType.ADJUST,
        refund,
        f"Cancellation refund for request {request.id} (fee: {fee} miles)",
        idempotency_key=f"request:{request.id}:CANCEL_REFUND",
        related_request_id=request.id,
    )
    await session.refresh(wallet)
    return refund, wallet.balance
