from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

# Storage-only marker for "no metering"; never leaves the column boundary.
UNLIMITED_SENTINEL = -1


@dataclass(frozen=True)
class Limited:
    miles: int

    @property
    def unlimited(self) -> bool:
        return False


@dataclass(frozen=True)
class Unlimited:
    @property
    def unlimited(self) -> bool:
        return True


UNLIMITED = Unlimited()

MilesBalance = Union[Limited, Unlimited]


def normalize_miles(value: float | int | None) -> int:
    """Truncate to an integer, mapping missing or non-finite values to 0."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return math.trunc(number)


def from_storage(raw: int | None) -> MilesBalance:
    value = normalize_miles(raw)
    if value == UNLIMITED_SENTINEL:
        return UNLIMITED
    return Limited(max(0, value))


def to_storage(balance: MilesBalance) -> int:
    if isinstance(balance, Unlimited):
        return UNLIMITED_SENTINEL
    return balance.miles


def as_balance(value: MilesBalance | int | float | None) -> MilesBalance:
    if isinstance(value, (Limited, Unlimited)):
        return value
    return from_storage(value)
