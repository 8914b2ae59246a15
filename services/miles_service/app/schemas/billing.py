from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..models import MembershipStatus


class BillingEventRequest(BaseModel):
    """Activation or renewal of a paid billing period."""

    invoice_id: str = Field(..., min_length=1, max_length=96)
    user_id: int
    plan_id: int
    period_end: datetime | None = None
    status: MembershipStatus = MembershipStatus.ACTIVE
    external_subscription_id: str | None = Field(None, max_length=128)
    external_customer_id: str | None = Field(None, max_length=128)


class AllocationResponse(BaseModel):
    status: str
    wallet_id: int | None = None
    miles_added: int = 0
    expired_miles: int = 0
