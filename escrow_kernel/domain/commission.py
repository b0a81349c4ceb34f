"""
Commission -- platform commission and provider amount arithmetic.

Responsibility:
    The single place where a booking total is split into the platform's
    commission and the provider's earned amount.  Every write path (locking
    amounts at completion) and every read path (pipeline projection) calls
    these functions so that all consumers agree on rate and rounding.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No clock, no
    randomness: identical inputs always give identical outputs.

Invariants enforced:
    - commission is rounded half-up to the currency's minor unit.
    - commission + provider_amount == total, exactly, in minor units.
    - 0 <= commission_rate < 1.

Failure modes:
    - InvalidAmountError for a negative total or an out-of-range rate.
    - CurrencyMismatchError if commission and total differ in currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from escrow_kernel.domain.values import Money
from escrow_kernel.exceptions import InvalidAmountError


def validate_commission_rate(rate: Decimal | str) -> Decimal:
    """Normalize a commission rate to Decimal and check its range."""
    if isinstance(rate, float):
        raise InvalidAmountError(repr(rate), "commission rate must not be a float")
    try:
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(repr(rate), "commission rate is not a number") from e
    if not (Decimal("0") <= value < Decimal("1")):
        raise InvalidAmountError(str(value), "commission rate must be in [0, 1)")
    return value


def compute_commission(total_amount: Money, commission_rate: Decimal) -> Money:
    """
    Compute the platform commission on a booking total.

    Preconditions:
        - total_amount is non-negative.
        - commission_rate is in [0, 1).

    Returns:
        Commission rounded half-up to the currency's minor unit.
    """
    rate = validate_commission_rate(commission_rate)
    if total_amount.is_negative:
        raise InvalidAmountError(str(total_amount.amount), "booking total must not be negative")
    return (total_amount * rate).round(ROUND_HALF_UP)


def compute_provider_amount(total_amount: Money, commission_amount: Money) -> Money:
    """Provider's earned amount: total minus commission."""
    return total_amount - commission_amount


@dataclass(frozen=True)
class EarningsSplit:
    """A booking total split into commission and provider amount."""

    total_amount: Money
    commission_amount: Money
    provider_amount: Money
    commission_rate: Decimal

    def __post_init__(self) -> None:
        if self.commission_amount + self.provider_amount != self.total_amount:
            raise InvalidAmountError(
                str(self.total_amount.amount),
                "commission and provider amount do not add up to the total",
            )


def split_earnings(total_amount: Money, commission_rate: Decimal) -> EarningsSplit:
    """Compute commission and provider amount in one step."""
    total = total_amount.round()
    commission = compute_commission(total, commission_rate)
    return EarningsSplit(
        total_amount=total,
        commission_amount=commission,
        provider_amount=compute_provider_amount(total, commission),
        commission_rate=validate_commission_rate(commission_rate),
    )


def projected_provider_amount(
    total_amount: Money,
    provider_amount: Money | None,
    commission_amount: Money | None,
    commission_rate: Decimal,
) -> Money:
    """
    Provider amount for a booking whose amounts may not be locked yet.

    Locked amounts win.  A locked commission without a provider amount
    yields ``total - commission``; otherwise the amount is projected from
    the rate with the same rounding used at completion.
    """
    if provider_amount is not None:
        return provider_amount
    if commission_amount is not None:
        return compute_provider_amount(total_amount, commission_amount)
    return split_earnings(total_amount, commission_rate).provider_amount
