from services.miles_service.app.miles import UNLIMITED, Limited, from_storage, normalize_miles, to_storage
from services.miles_service.app.rollover import calculate_rollover


def test_balance_above_cap_expires_the_excess():
    result = calculate_rollover(120, 40, 60)
    assert result.rollover_bank == Limited(40)
    assert result.expired_miles == 80
    assert result.new_balance == Limited(100)


def test_balance_below_cap_rolls_over_entirely():
    result = calculate_rollover(25, 40, 60)
    assert result.rollover_bank == Limited(25)
    assert result.expired_miles == 0
    assert result.new_balance == Limited(85)


def test_unlimited_grant_dominates():
    result = calculate_rollover(Limited(500), 40, UNLIMITED)
    assert result.unlimited
    assert result.expired_miles == 0
    assert result.rollover_bank == UNLIMITED


def test_unlimited_balance_stays_unlimited():
    result = calculate_rollover(-1, 40, 60)
    assert result.new_balance == UNLIMITED


def test_unlimited_cap_keeps_whole_balance():
    result = calculate_rollover(300, -1, 60)
    assert result.rollover_bank == Limited(300)
    assert result.expired_miles == 0
    assert result.new_balance == Limited(360)


def test_inputs_are_floored_and_truncated():
    result = calculate_rollover(-5, 40.9, 10.7)
    assert result.rollover_bank == Limited(0)
    assert result.expired_miles == 0
    assert result.new_balance == Limited(10)

    assert calculate_rollover(None, None, None).new_balance == Limited(0)


def test_storage_boundary():
    assert from_storage(-1) == UNLIMITED
    assert from_storage(-7) == Limited(0)
    assert to_storage(UNLIMITED) == -1
    assert to_storage(Limited(12)) == 12
    assert normalize_miles(float("nan")) == 0
    assert normalize_miles(float("inf")) == 0
