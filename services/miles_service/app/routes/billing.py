from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from services.miles_service.app.dependencies import get_allocation_service, verify_billing_secret
from services.miles_service.app.errors import RaceConditionDetected
from services.miles_service.app.schemas import AllocationResponse, BillingEventRequest
from services.miles_service.app.services import AllocationService, AllocationStatus, BillingEvent

router = APIRouter(dependencies=[Depends(verify_billing_secret)])


@router.post("/events", response_model=AllocationResponse)
async def receive_billing_event(
    payload: BillingEventRequest,
    service: Annotated[AllocationService, Depends(get_allocation_service)],
) -> AllocationResponse:
    """Apply a paid billing period. Redelivery of the same invoice is acknowledged without effect."""
    result = await service.allocate(BillingEvent(**payload.model_dump()))
    if result.status == AllocationStatus.RACE_CONDITION_DETECTED:
        raise RaceConditionDetected(f"Invoice {payload.invoice_id} is being processed concurrently")
    return AllocationResponse(
        status=result.status.value.lower(),
        wallet_id=result.wallet_id,
        miles_added=result.miles_added,
        expired_miles=result.expired_miles,
    )
