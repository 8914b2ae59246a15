from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeliveryRequestCreate(BaseModel):
    service_type: str = Field(..., min_length=1, max_length=32)
    scheduled_start: datetime
    travel_minutes: int = Field(..., ge=0)
    wait_minutes: int = Field(0, ge=0)
    number_of_stops: int = Field(0, ge=0)
    return_or_exchange: bool = False
    cash_handling: bool = False
    peak_hours: bool = False
    priority: bool = Field(False, description="Priority dispatch or a locked driver")
    pay_with_miles: bool = True
    idempotency_key: str | None = Field(None, max_length=128)
    quote_token: str | None = None
    pickup_address: str | None = None
    dropoff_address: str | None = None
    notes: str | None = Field(None, max_length=2000)


class DeliveryRequestResponse(BaseModel):
    id: int
    user_id: int
    service_type: str
    status: str
    scheduled_start: datetime
    service_miles_base: int
    service_miles_adders: int
    service_miles_discount: int
    service_miles_final: int
    quote_breakdown: dict[str, Any] | None = None
    delivery_fee_paid: bool
    idempotency_key: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SubmissionResponse(BaseModel):
    request: DeliveryRequestResponse
    replayed: bool
    miles_charged: int


class CancellationResponse(BaseModel):
    request_id: int
    already_canceled: bool
    refund_miles: int
    fee_miles: int
    stage: str | None = None
