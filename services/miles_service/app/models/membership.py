from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from services.miles_service.app.db.base import TimestampedModel
from services.miles_service.app.miles import UNLIMITED_SENTINEL, MilesBalance, from_storage

WILDCARD_SERVICE_TYPE = "*"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"


class MembershipPlan(TimestampedModel):
    """Reference data; the ledger reads plans and never mutates them."""

    __tablename__ = "membership_plans"

    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    monthly_service_miles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rollover_cap_miles: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    advance_discount_max: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    allowed_service_types: Mapped[list[str] | None] = mapped_column(JSON, nullable=True, default=None)
    cash_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def monthly_grant(self) -> MilesBalance:
        return from_storage(self.monthly_service_miles)

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_service_miles == UNLIMITED_SENTINEL

    @property
    def is_priority_eligible(self) -> bool:
        return self.priority_level > 0

    def allows_service_type(self, service_type: str) -> bool:
        return is_service_type_allowed(self.allowed_service_types, service_type)


def is_service_type_allowed(allowed: Any, service_type: str) -> bool:
    if allowed is None:
        return True
    if isinstance(allowed, str):
        return allowed in (WILDCARD_SERVICE_TYPE, service_type)
    if isinstance(allowed, (list, tuple)):
        values = [value for value in allowed if isinstance(value, str)]
        return WILDCARD_SERVICE_TYPE in values or service_type in values
    return False


class MembershipSubscription(TimestampedModel):
    __tablename__ = "membership_subscriptions"

    user_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    plan_id: Mapped[int] = mapped_column(ForeignKey("membership_plans.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MembershipStatus.ACTIVE.value)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    external_subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    external_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    plan = relationship("MembershipPlan", lazy="joined")

    @property
    def is_active(self) -> bool:
        return self.status == MembershipStatus.ACTIVE.value
