from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from services.miles_service.app.dependencies import (
    SessionDep,
    get_cancellation_service,
    get_consumption_service,
    get_current_user_id,
    get_quote_tokens,
)
from services.miles_service.app.quote_engine import QuoteRequest, quote_for
from services.miles_service.app.quote_tokens import QuoteTokenCodec
from services.miles_service.app.schemas import (
    CancellationResponse,
    DeliveryRequestCreate,
    DeliveryRequestResponse,
    QuotePreviewRequest,
    QuotePreviewResponse,
    QuoteSnapshotV1,
    SubmissionResponse,
)
from services.miles_service.app.services import CancellationService, ConsumptionService, JobSubmission
from services.miles_service.app.services.consumption import load_active_plan, utcnow, validate_plan_options

router = APIRouter()

CurrentUserDep = Annotated[int, Depends(get_current_user_id)]


def _job(payload: QuotePreviewRequest | DeliveryRequestCreate) -> QuoteRequest:
    return QuoteRequest(
        travel_minutes=payload.travel_minutes,
        scheduled_start=payload.scheduled_start,
        wait_minutes=payload.wait_minutes,
        number_of_stops=payload.number_of_stops,
        return_or_exchange=payload.return_or_exchange,
        cash_handling=payload.cash_handling,
        peak_hours=payload.peak_hours,
    )


@router.post("/quote", response_model=QuotePreviewResponse)
async def preview_quote(
    payload: QuotePreviewRequest,
    session: SessionDep,
    current_user_id: CurrentUserDep,
    quote_tokens: Annotated[QuoteTokenCodec, Depends(get_quote_tokens)],
) -> QuotePreviewResponse:
    plan = await load_active_plan(session, current_user_id)
    validate_plan_options(plan, payload.service_type, cash_handling=payload.cash_handling, priority=False)

    job = _job(payload)
    quoted_at = utcnow()
    quote = quote_for(job, now=quoted_at, advance_discount_max=plan.advance_discount_max)
    token = quote_tokens.sign(
        user_id=current_user_id,
        service_type=payload.service_type,
        job=job,
        advance_discount_max=plan.advance_discount_max,
        quoted_at=quoted_at,
    )
    return QuotePreviewResponse(
        quote=QuoteSnapshotV1.from_quote(quote, quoted_at=quoted_at),
        quote_token=token,
        expires_in=quote_tokens.ttl_seconds,
    )


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: DeliveryRequestCreate,
    response: Response,
    current_user_id: CurrentUserDep,
    service: Annotated[ConsumptionService, Depends(get_consumption_service)],
) -> SubmissionResponse:
    result = await service.submit(
        JobSubmission(
            user_id=current_user_id,
            service_type=payload.service_type,
            job=_job(payload),
            pay_with_miles=payload.pay_with_miles,
            priority=payload.priority,
            idempotency_key=payload.idempotency_key,
            quote_token=payload.quote_token,
            pickup_address=payload.pickup_address,
            dropoff_address=payload.dropoff_address,
            notes=payload.notes,
        )
    )
    if result.replayed:
        response.status_code = status.HTTP_200_OK
    return SubmissionResponse(
        request=DeliveryRequestResponse.model_validate(result.request),
        replayed=result.replayed,
        miles_charged=result.miles_charged,
    )


@router.post("/{request_id}/cancel", response_model=CancellationResponse)
async def cancel_request(
    request_id: int,
    current_user_id: CurrentUserDep,
    service: Annotated[CancellationService, Depends(get_cancellation_service)],
) -> CancellationResponse:
    outcome = await service.cancel(request_id, current_user_id)
    return CancellationResponse(
        request_id=outcome.request_id,
        already_canceled=outcome.already_canceled,
        refund_miles=outcome.refund_miles,
        fee_miles=outcome.fee_miles,
        stage=outcome.stage.value if outcome.stage else None,
    )
