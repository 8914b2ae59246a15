from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from services.miles_service.app.quote_engine import (
    advance_discount_rate,
    calculate_quote,
    hours_in_advance,
    quote_for,
    QuoteRequest,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _quote(travel_minutes=50, hours_ahead=2, advance_discount_max=0, **flags):
    params = {
        "travel_minutes": travel_minutes,
        "wait_minutes": 0,
        "number_of_stops": 0,
        "return_or_exchange": False,
        "cash_handling": False,
        "peak_hours": False,
    }
    params.update(flags)
    return calculate_quote(
        scheduled_start=NOW + timedelta(hours=hours_ahead),
        now=NOW,
        advance_discount_max=advance_discount_max,
        **params,
    )


def test_base_rounds_travel_time_up_to_whole_miles():
    quote = _quote(travel_minutes=11)
    assert quote.base == 3
    assert quote.adders.total == 0
    assert quote.final == 3


def test_zero_length_job_still_costs_one_mile():
    quote = _quote(travel_minutes=0)
    assert quote.base == 0
    assert quote.subtotal == 0
    assert quote.final == 1


def test_adders_are_itemized():
    quote = _quote(
        travel_minutes=20,
        wait_minutes=12,
        number_of_stops=2,
        cash_handling=True,
        return_or_exchange=True,
        peak_hours=True,
    )
    assert quote.base == 4
    assert quote.adders.wait_time == 3
    assert quote.adders.multi_stop == 8
    assert quote.adders.cash_handling == 12
    # percentages apply to base + wait + stops + cash (27) and round up independently
    assert quote.adders.return_exchange == 7
    assert quote.adders.peak_hours == 3
    assert quote.subtotal == 37
    assert quote.final == 37


@pytest.mark.parametrize(
    "hours_ahead, rate, discount, final",
    [
        (80, Decimal("0.20"), 2, 8),
        (72, Decimal("0.20"), 2, 8),
        (50, Decimal("0.15"), 1, 9),
        (24, Decimal("0.10"), 1, 9),
        (23.5, Decimal("0"), 0, 10),
        (-3, Decimal("0"), 0, 10),
    ],
)
def test_advance_discount_tiers(hours_ahead, rate, discount, final):
    quote = _quote(travel_minutes=50, hours_ahead=hours_ahead)
    assert quote.discount.percentage == rate
    assert quote.discount.amount == discount
    assert quote.final == final


def test_discount_is_capped_by_plan():
    uncapped = _quote(travel_minutes=250, hours_ahead=96)
    capped = _quote(travel_minutes=250, hours_ahead=96, advance_discount_max=4)
    assert uncapped.discount.amount == 10
    assert capped.discount.amount == 4
    assert capped.final == 46


def test_discount_never_pushes_below_minimum_charge():
    quote = _quote(travel_minutes=1, hours_ahead=100)
    assert quote.final >= 1


def test_identical_inputs_give_identical_quotes():
    request = QuoteRequest(travel_minutes=33, scheduled_start=NOW + timedelta(hours=30), wait_minutes=7, peak_hours=True)
    assert quote_for(request, now=NOW) == quote_for(request, now=NOW)


def test_naive_datetimes_are_treated_as_utc():
    naive_start = datetime(2026, 3, 5, 12, 0)
    assert hours_in_advance(naive_start, NOW) == pytest.approx(72.0)


def test_advance_discount_rate_boundaries():
    assert advance_discount_rate(71.99) == Decimal("0.15")
    assert advance_discount_rate(48) == Decimal("0.15")
    assert advance_discount_rate(0) == Decimal("0")
