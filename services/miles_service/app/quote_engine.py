from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

MINUTES_PER_SERVICE_MILE = 5
MILES_PER_STOP = 4
CASH_HANDLING_MILES = 12
RETURN_OR_EXCHANGE_RATE = Decimal("0.25")
PEAK_HOURS_RATE = Decimal("0.10")

# (minimum hours booked ahead, discount rate), checked top-down
ADVANCE_DISCOUNT_TIERS: tuple[tuple[int, Decimal], ...] = (
    (72, Decimal("0.20")),
    (48, Decimal("0.15")),
    (24, Decimal("0.10")),
)

MINIMUM_CHARGE_MILES = 1


@dataclass(frozen=True)
class QuoteAdders:
    wait_time: int = 0
    multi_stop: int = 0
    cash_handling: int = 0
    return_exchange: int = 0
    peak_hours: int = 0

    @property
    def total(self) -> int:
        return self.wait_time + self.multi_stop + self.cash_handling + self.return_exchange + self.peak_hours


@dataclass(frozen=True)
class QuoteDiscount:
    hours_in_advance: float
    percentage: Decimal
    amount: int


@dataclass(frozen=True)
class Quote:
    base: int
    adders: QuoteAdders
    discount: QuoteDiscount
    subtotal: int
    final: int


@dataclass(frozen=True)
class QuoteRequest:
    travel_minutes: float
    scheduled_start: datetime
    wait_minutes: float = 0
    number_of_stops: int = 0
    return_or_exchange: bool = False
    cash_handling: bool = False
    peak_hours: bool = False


def _per_service_mile(minutes: float) -> int:
    return math.ceil(Decimal(str(max(0, minutes))) / MINUTES_PER_SERVICE_MILE)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hours_in_advance(scheduled_start: datetime, now: datetime) -> float:
    return (_as_utc(scheduled_start) - _as_utc(now)).total_seconds() / 3600


def advance_discount_rate(hours: float) -> Decimal:
    for min_hours, rate in ADVANCE_DISCOUNT_TIERS:
        if hours >= min_hours:
            return rate
    return Decimal("0")


def calculate_quote(
    travel_minutes: float,
    wait_minutes: float,
    number_of_stops: int,
    return_or_exchange: bool,
    cash_handling: bool,
    peak_hours: bool,
    scheduled_start: datetime,
    now: datetime,
    advance_discount_max: int = 0,
) -> Quote:
    """Price a job in Service Miles.

    Percentage adders are computed on the fixed subtotal (base, wait, stops and
    cash) and rounded up independently. The advance-booking discount is rounded
    down and capped by the plan. The result never drops below one mile.
    Decimal arithmetic keeps rounding exact; identical inputs, ``now``
    included, always produce the same quote.
    """
    base = _per_service_mile(travel_minutes)
    wait = _per_service_mile(wait_minutes)
    stops = max(0, int(number_of_stops or 0)) * MILES_PER_STOP
    cash = CASH_HANDLING_MILES if cash_handling else 0

    fixed_subtotal = base + wait + stops + cash
    return_adder = math.ceil(fixed_subtotal * RETURN_OR_EXCHANGE_RATE) if return_or_exchange else 0
    peak_adder = math.ceil(fixed_subtotal * PEAK_HOURS_RATE) if peak_hours else 0
    adders = QuoteAdders(
        wait_time=wait,
        multi_stop=stops,
        cash_handling=cash,
        return_exchange=return_adder,
        peak_hours=peak_adder,
    )
    subtotal = base + adders.total

    hours = hours_in_advance(scheduled_start, now)
    rate = advance_discount_rate(hours)
    discount_amount = math.floor(subtotal * rate)
    if advance_discount_max and advance_discount_max > 0:
        discount_amount = min(discount_amount, advance_discount_max)

    final = max(MINIMUM_CHARGE_MILES, subtotal - discount_amount)
    return Quote(
        base=base,
        adders=adders,
        discount=QuoteDiscount(hours_in_advance=hours, percentage=rate, amount=discount_amount),
        subtotal=subtotal,
        final=final,
    )


def quote_for(request: QuoteRequest, now: datetime, advance_discount_max: int = 0) -> Quote:
    return calculate_quote(
        travel_minutes=request.travel_minutes,
        wait_minutes=request.wait_minutes,
        number_of_stops=request.number_of_stops,
        return_or_exchange=request.return_or_exchange,
        cash_handling=request.cash_handling,
        peak_hours=request.peak_hours,
        scheduled_start=request.scheduled_start,
        now=now,
        advance_discount_max=advance_discount_max,
    )
