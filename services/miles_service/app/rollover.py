from __future__ import annotations

from dataclasses import dataclass

from .miles import UNLIMITED, UNLIMITED_SENTINEL, Limited, MilesBalance, Unlimited, normalize_miles


@dataclass(frozen=True)
class RolloverResult:
    rollover_bank: MilesBalance
    expired_miles: int
    new_balance: MilesBalance

    @property
    def unlimited(self) -> bool:
        return isinstance(self.new_balance, Unlimited)


def _raw(value: MilesBalance | int | float | None) -> int:
    if isinstance(value, Unlimited):
        return UNLIMITED_SENTINEL
    if isinstance(value, Limited):
        return value.miles
    return normalize_miles(value)


def calculate_rollover(
    current_balance: MilesBalance | int | float | None,
    rollover_cap: int | float | None,
    monthly_grant: MilesBalance | int | float | None,
) -> RolloverResult:
    """Carry the current balance into a new billing period.

    Unlimited on either side dominates. Otherwise the balance is kept up to the
    plan cap, the remainder expires, and the monthly grant is added on top.
    A sentinel cap means the whole balance rolls over.
    """
    current_raw = _raw(current_balance)
    cap_raw = normalize_miles(rollover_cap)
    grant_raw = _raw(monthly_grant)

    if current_raw == UNLIMITED_SENTINEL or grant_raw == UNLIMITED_SENTINEL:
        return RolloverResult(rollover_bank=UNLIMITED, expired_miles=0, new_balance=UNLIMITED)

    balance = max(0, current_raw)
    grant = max(0, grant_raw)
    if cap_raw == UNLIMITED_SENTINEL:
        bank = balance
    else:
        bank = min(balance, max(0, cap_raw))
    expired = balance - bank
    return RolloverResult(
        rollover_bank=Limited(bank),
        expired_miles=expired,
        new_balance=Limited(bank + grant),
    )
