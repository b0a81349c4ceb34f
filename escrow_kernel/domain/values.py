"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides Currency and Money, the types every commission, escrow and
    earnings computation is expressed in.  Amounts are Decimal and are
    persisted as integer minor units, never binary floating point, so
    aggregation across many bookings never drifts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module.

Invariants enforced:
    - Money pairs an amount with its currency; they are never separated.
    - Arithmetic and comparison across currencies raise CurrencyMismatchError.
    - Float amounts are rejected at construction.

Failure modes:
    - ValueError on invalid currency codes.
    - InvalidAmountError on float or non-numeric amounts, or on minor-unit
      conversion of an amount finer than the currency allows.
    - CurrencyMismatchError when mixing currencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from escrow_kernel.domain.currency import CurrencyRegistry
from escrow_kernel.exceptions import CurrencyMismatchError, InvalidAmountError


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - code is uppercase, stripped, and registered in CurrencyRegistry.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = CurrencyRegistry.validate(self.code)
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount in this currency."""
        return Decimal(1).scaleb(-self.decimal_places)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency.  This is the canonical
        representation of totals, commissions, provider amounts and every
        earnings aggregate.

    Guarantees:
        - Immutable and hashable.
        - ``amount`` is always a Decimal (never float).
        - Arithmetic enforces the same-currency constraint.

    Non-goals:
        - Does NOT auto-round -- callers call ``round()`` explicitly.
        - Does NOT convert between currencies.
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.amount, float):
            raise InvalidAmountError(repr(self.amount), "float amounts are not allowed")
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, "amount", Decimal(str(self.amount)))
            except (InvalidOperation, ValueError) as e:
                raise InvalidAmountError(repr(self.amount), "not a number") from e
        if not self.amount.is_finite():
            raise InvalidAmountError(str(self.amount), "amount must be finite")

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Factory method for creating Money.

        Args:
            amount: The monetary amount (Decimal, str or int -- never float).
            currency: ISO 4217 currency code or Currency object.
        """
        if isinstance(amount, (str, int)) and not isinstance(amount, bool):
            amount = Decimal(str(amount))
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=Decimal("0"), currency=currency)

    @classmethod
    def from_minor_units(cls, units: int, currency: str | Currency) -> Money:
        """Build Money from an integer count of minor units (e.g. pesewas)."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(
            amount=Decimal(int(units)).scaleb(-currency.decimal_places),
            currency=currency,
        )

    def to_minor_units(self) -> int:
        """
        Convert to an integer count of minor units.

        Raises:
            InvalidAmountError: If the amount has more precision than the
                currency's minor unit (call ``round()`` first).
        """
        scaled = self.amount.scaleb(self.currency.decimal_places)
        if scaled != scaled.to_integral_value():
            raise InvalidAmountError(
                str(self.amount),
                f"finer than the {self.currency.code} minor unit; round first",
            )
        return int(scaled)

    @property
    def is_zero(self) -> bool:
        return self.amount == Decimal("0")

    @property
    def is_negative(self) -> bool:
        return self.amount < Decimal("0")

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's minor unit (half-up by default)."""
        rounded = self.amount.quantize(self.currency.minor_unit, rounding=rounding)
        return Money(amount=rounded, currency=self.currency)

    def _check_currency(self, other: Money) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.code, other.currency.code)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, (int, str)) and not isinstance(factor, bool):
            factor = Decimal(str(factor))
        if not isinstance(factor, Decimal):
            return NotImplemented
        return Money(amount=self.amount * factor, currency=self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


def sum_money(values: Iterable[Money], currency: str | Currency) -> Money:
    """Sum Money values; an empty iterable yields zero in ``currency``."""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
