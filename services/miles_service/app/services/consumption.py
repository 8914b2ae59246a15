from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.session import SessionFactory, unit_of_work
from ..errors import (
    InsufficientMiles,
    NotFound,
    PlanNotAllowed,
    QuoteTokenInvalid,
    RaceConditionDetected,
    TransactionConflict,
)
from ..metrics import miles_debit_total, miles_idempotency_replay_total, miles_insufficient_total
from ..miles import MilesBalance
from ..models import (
    DeliveryRequest,
    DeliveryRequestStatus,
    MembershipPlan,
    MembershipSubscription,
    TransactionType,
    Wallet,
)
from ..quote_engine import Quote, QuoteRequest, quote_for
from ..quote_tokens import QuoteTokenCodec
from ..schemas.quote import QuoteSnapshotV1
from .ledger import append_entry, get_or_create_wallet, load_wallet


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class JobSubmission:
    user_id: int
    service_type: str
    job: QuoteRequest
    pay_with_miles: bool = True
    priority: bool = False
    idempotency_key: str | None = None
    quote_token: str | None = None
    pickup_address: str | None = None
    dropoff_address: str | None = None
    notes: str | None = None


@dataclass
class SubmissionResult:
    request: DeliveryRequest
    replayed: bool
    miles_charged: int
    balance: MilesBalance | None
    quote: Quote | None = None


async def load_active_plan(session: AsyncSession, user_id: int) -> MembershipPlan:
    membership = await session.scalar(
        select(MembershipSubscription).where(MembershipSubscription.user_id == user_id)
    )
    if membership is None:
        raise NotFound(f"No membership found for user {user_id}")
    if not membership.is_active:
        raise PlanNotAllowed("Active membership required")
    plan = membership.plan
    if plan is None:
        raise NotFound("Membership plan not found")
    return plan


def validate_plan_options(plan: MembershipPlan, service_type: str, *, cash_handling: bool, priority: bool) -> None:
    if not plan.allows_service_type(service_type):
        raise PlanNotAllowed(f"Service type {service_type} not allowed for this plan")
    if cash_handling and not plan.cash_allowed:
        raise PlanNotAllowed("Cash handling is not included in this plan")
    if priority and not plan.is_priority_eligible:
        raise PlanNotAllowed("Priority and locked-driver requests require a priority plan")


class ConsumptionService:
    """Prices a job and pays for it from the customer's wallet in one transaction."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        isolation_level: str | None = "SERIALIZABLE",
        quote_tokens: QuoteTokenCodec | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._isolation_level = isolation_level
        self._quote_tokens = quote_tokens
        self._clock = clock

    async def submit(self, submission: JobSubmission) -> SubmissionResult:
        log = logger.bind(user_id=submission.user_id, service_type=submission.service_type)
        try:
            result = await self._run(submission)
        except InsufficientMiles as exc:
            miles_insufficient_total.labels(service_type=submission.service_type).inc()
            log.info(f"miles.consumption.insufficient required={exc.required} available={exc.available}")
            raise

        if result.replayed:
            miles_idempotency_replay_total.labels(operation="consumption").inc()
            log.info(f"miles.consumption.replayed request_id={result.request.id}")
        else:
            if result.miles_charged:
                miles_debit_total.labels(service_type=submission.service_type).inc()
            log.info(f"miles.consumption.submitted request_id={result.request.id} charged={result.miles_charged}")
        return result

    async def _run(self, submission: JobSubmission) -> SubmissionResult:
        try:
            async with unit_of_work(self._session_factory, self._isolation_level) as session:
                return await self._submit(session, submission)
        except TransactionConflict:
            return await self._after_conflict(submission)

    async def _after_conflict(self, submission: JobSubmission) -> SubmissionResult:
        """Explain a transaction the database aborted, from the state the winner committed.

        A replay is returned as such; a wallet that no longer covers the quote
        raises ``InsufficientMiles``; anything else stays a race. Nothing is retried.
        """
        async with self._session_factory() as session:
            plan = await load_active_plan(session, submission.user_id)
            existing = await _find_submitted(session, submission)
            if existing is not None:
                return SubmissionResult(request=existing, replayed=True, miles_charged=0, balance=None)

            quoted_at, discount_cap = self._pricing_inputs(submission, plan)
            quote = quote_for(submission.job, now=quoted_at, advance_discount_max=discount_cap)
            wallet = await load_wallet(session, submission.user_id)

        if submission.pay_with_miles and wallet is not None and not wallet.is_unlimited:
            if wallet.balance_miles < quote.final:
                raise InsufficientMiles(required=quote.final, available=wallet.balance_miles)
        raise RaceConditionDetected("Wallet was updated by a concurrent request; submit again")

    def _pricing_inputs(self, submission: JobSubmission, plan: MembershipPlan) -> tuple[datetime, int]:
        if not submission.quote_token:
            return self._clock(), plan.advance_discount_max
        if self._quote_tokens is None:
            raise QuoteTokenInvalid("Quote tokens are not accepted by this service")
        claims = self._quote_tokens.verify(
            submission.quote_token,
            user_id=submission.user_id,
            service_type=submission.service_type,
            job=submission.job,
        )
        return claims.quoted_at, claims.advance_discount_max

    async def _submit(self, session: AsyncSession, submission: JobSubmission) -> SubmissionResult:
        plan = await load_active_plan(session, submission.user_id)
        validate_plan_options(
            plan,
            submission.service_type,
            cash_handling=submission.job.cash_handling,
            priority=submission.priority,
        )

        existing = await _find_submitted(session, submission)
        if existing is not None:
            return SubmissionResult(request=existing, replayed=True, miles_charged=0, balance=None)

        quoted_at, discount_cap = self._pricing_inputs(submission, plan)
        quote = quote_for(submission.job, now=quoted_at, advance_discount_max=discount_cap)

        wallet = await get_or_create_wallet(session, submission.user_id)
        miles_applied = submission.pay_with_miles
        charged = 0
        if miles_applied and not wallet.is_unlimited:
            await _debit(session, wallet, quote.final)
            charged = quote.final

        request = DeliveryRequest(
            user_id=submission.user_id,
            service_type=submission.service_type,
            status=DeliveryRequestStatus.REQUESTED.value,
            scheduled_start=submission.job.scheduled_start,
            pickup_address=submission.pickup_address,
            dropoff_address=submission.dropoff_address,
            notes=submission.notes,
            cash_handling=submission.job.cash_handling,
            priority_requested=submission.priority,
            service_miles_base=quote.base,
            service_miles_adders=quote.adders.total,
            service_miles_discount=quote.discount.amount,
            service_miles_final=quote.final,
            quote_breakdown=QuoteSnapshotV1.from_quote(quote, quoted_at=quoted_at).model_dump(mode="json"),
            delivery_fee_paid=miles_applied,
            idempotency_key=submission.idempotency_key,
        )
        session.add(request)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise RaceConditionDetected(
                f"Request with idempotency key {submission.idempotency_key} was submitted concurrently"
            ) from exc

        if miles_applied:
            if wallet.is_unlimited:
                description = f"Unlimited plan: {submission.service_type} request ({quote.final} miles not metered)"
            else:
                description = f"Request deduction for {submission.service_type} ({quote.final} miles)"
            await append_entry(
                session,
                wallet,
                TransactionType.DEDUCT_REQUEST,
                -charged,
                description,
                idempotency_key=f"request:{request.id}:DEDUCT",
                related_request_id=request.id,
            )

        return SubmissionResult(
            request=request,
            replayed=False,
            miles_charged=charged,
            balance=wallet.balance,
            quote=quote,
        )


async def _find_submitted(session: AsyncSession, submission: JobSubmission) -> DeliveryRequest | None:
    if not submission.idempotency_key:
        return None
    return await session.scalar(
        select(DeliveryRequest).where(
            DeliveryRequest.user_id == submission.user_id,
            DeliveryRequest.idempotency_key == submission.idempotency_key,
        )
    )


async def _debit(session: AsyncSession, wallet: Wallet, amount: int) -> None:
    """Conditional decrement: a losing concurrent writer matches zero rows."""
    result = await session.execute(
        update(Wallet)
        .where(Wallet.id == wallet.id, Wallet.balance_miles >= amount)
        .values(balance_miles=Wallet.balance_miles - amount)
        .execution_options(synchronize_session=False)
    )
    await session.refresh(wallet)
    if result.rowcount == 0:
        raise InsufficientMiles(required=amount, available=wallet.balance_miles)
