from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from services.miles_service.app.db.base import TimestampedModel


class DeliveryRequestStatus(str, Enum):
    REQUESTED = "REQUESTED"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    EN_ROUTE = "EN_ROUTE"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class DeliveryRequest(TimestampedModel):
    """Request row owned by the dispatch side; the ledger writes only payment fields and status."""

    __tablename__ = "delivery_requests"
    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_delivery_request_user_idem"),
    )

    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    service_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=DeliveryRequestStatus.REQUESTED.value
    )
    scheduled_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    pickup_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    dropoff_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cash_handling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    service_miles_base: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_miles_adders: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_miles_discount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_miles_final: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quote_breakdown: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, default=None)
    delivery_fee_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)

    assigned_driver_id: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
    cancellation_fee_miles: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    refunded_miles: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)

    @property
    def paid_miles(self) -> int:
        return self.service_miles_final if self.delivery_fee_paid else 0
