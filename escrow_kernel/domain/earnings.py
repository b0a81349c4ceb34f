"""
Earnings -- derive a provider's financial position from booking rows.

Responsibility:
    Pure aggregation over a provider's bookings.  There is no stored
    balance anywhere: the snapshot is recomputed from bookings every time
    it is requested, the way a derived index is rebuilt from its log.

        pipeline_value      paid, status CONFIRMED/IN_PROGRESS
        pending_escrow      earned, inside the hold window
        available_balance   escrow released
        total_earning_power available + pending + pipeline

    Period buckets (today/week/month/year) sum the released set by
    ``completed_at``; growth compares each bucket to the period before it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by
    EarningsSelector after it loads the provider's bookings.

Invariants enforced:
    - An empty booking set yields all zeros.
    - Growth never divides by zero: 0% when both periods are zero, 100%
      when only the prior period is zero.
    - All sums use Money, so currency mixing raises CurrencyMismatchError
      instead of producing a meaningless total.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from escrow_kernel.domain.commission import compute_commission, projected_provider_amount
from escrow_kernel.domain.dtos import BookingEventType, BookingInfo
from escrow_kernel.domain.escrow import EscrowBucket, classify_escrow, earned_amount
from escrow_kernel.domain.lifecycle import PIPELINE_STATUSES
from escrow_kernel.domain.values import Money, sum_money

_HUNDRED = Decimal("100")
_PERCENT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class PeriodEarnings:
    """Released earnings inside one period window."""

    amount: Money
    bookings: int
    growth: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": str(self.amount.amount),
            "bookings": self.bookings,
            "growth": str(self.growth),
        }


@dataclass(frozen=True)
class ProviderEarningsSnapshot:
    """Point-in-time earnings position of one provider. Never persisted."""

    provider_id: str
    as_of: datetime
    available_balance: Money
    pending_escrow: Money
    pipeline_value: Money
    total_earning_power: Money
    available_to_release: Money
    average_per_booking: Money
    pipeline_bookings: int
    released_bookings: int
    escrow_bookings: int
    today: PeriodEarnings
    week: PeriodEarnings
    month: PeriodEarnings
    year: PeriodEarnings

    @property
    def currency(self) -> str:
        return self.available_balance.currency.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "asOf": self.as_of.isoformat(),
            "currency": self.currency,
            "availableBalance": str(self.available_balance.amount),
            "pendingEscrow": str(self.pending_escrow.amount),
            "pipelineValue": str(self.pipeline_value.amount),
            "totalEarningPower": str(self.total_earning_power.amount),
            "availableToRelease": str(self.available_to_release.amount),
            "averagePerBooking": str(self.average_per_booking.amount),
            "pipelineBookings": self.pipeline_bookings,
            "releasedBookings": self.released_bookings,
            "escrowBookings": self.escrow_bookings,
            "today": self.today.to_dict(),
            "week": self.week.to_dict(),
            "month": self.month.to_dict(),
            "year": self.year.to_dict(),
        }


@dataclass(frozen=True)
class MonthlyEarnings:
    """Released earnings for one calendar month."""

    year: int
    month: int
    amount: Money
    bookings: int
    growth: Decimal

    @property
    def label(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class PeriodWindow:
    """Current window ``[start, end]`` and the period before it ``[prev_start, start)``."""

    start: datetime
    end: datetime
    prev_start: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end

    def contains_previous(self, moment: datetime) -> bool:
        return self.prev_start <= moment < self.start


def growth_percent(current: Money, previous: Money) -> Decimal:
    """Percentage change from ``previous`` to ``current``, zero-safe."""
    if previous.is_zero:
        if current.is_zero:
            return Decimal("0.00")
        return Decimal("100.00")
    change = (current.amount - previous.amount) / previous.amount * _HUNDRED
    return change.quantize(_PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


def _month_start(moment: datetime, months_back: int = 0) -> datetime:
    index = moment.year * 12 + (moment.month - 1) - months_back
    return moment.replace(
        year=index // 12, month=index % 12 + 1, day=1,
        hour=0, minute=0, second=0, microsecond=0,
    )


def period_windows(now: datetime) -> dict[str, PeriodWindow]:
    """
    Calendar windows ending at ``now``.

    Weeks start on Sunday.  The prior window is the whole previous day,
    week, calendar month or calendar year.
    """
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    # datetime.weekday(): Monday=0 .. Sunday=6
    week_start = day_start - timedelta(days=(now.weekday() + 1) % 7)
    month_start = _month_start(now)
    year_start = day_start.replace(month=1, day=1)
    return {
        "today": PeriodWindow(day_start, now, day_start - timedelta(days=1)),
        "week": PeriodWindow(week_start, now, week_start - timedelta(days=7)),
        "month": PeriodWindow(month_start, now, _month_start(now, 1)),
        "year": PeriodWindow(year_start, now, year_start.replace(year=year_start.year - 1)),
    }


def _period(released: list[tuple[BookingInfo, Money]], window: PeriodWindow, currency: str) -> PeriodEarnings:
    current = [(b, m) for b, m in released if window.contains(b.completed_at)]
    previous = [m for b, m in released if window.contains_previous(b.completed_at)]
    current_sum = sum_money((m for _, m in current), currency)
    previous_sum = sum_money(previous, currency)
    return PeriodEarnings(
        amount=current_sum,
        bookings=len(current),
        growth=growth_percent(current_sum, previous_sum),
    )


def compute_earnings_snapshot(
    provider_id: str,
    bookings: Iterable[BookingInfo],
    now: datetime,
    hold_period: timedelta,
    currency: str,
) -> ProviderEarningsSnapshot:
    """
    Build the provider's earnings snapshot as of ``now``.

    Args:
        provider_id: Provider the bookings belong to.
        bookings: Every booking of that provider (any status).
        now: Point in time for escrow classification and period windows.
        hold_period: Escrow hold window.
        currency: Currency every booking is expected to be priced in.
    """
    pipeline: list[Money] = []
    pending: list[Money] = []
    releasable: list[Money] = []
    released: list[tuple[BookingInfo, Money]] = []

    for booking in bookings:
        if booking.is_paid and booking.status in PIPELINE_STATUSES:
            pipeline.append(
                projected_provider_amount(
                    booking.total_amount,
                    booking.provider_amount,
                    booking.commission_amount,
                    booking.commission_rate,
                )
            )
            continue

        bucket = classify_escrow(booking, now, hold_period)
        if bucket is None:
            continue
        amount = earned_amount(booking)
        if bucket is EscrowBucket.RELEASED:
            released.append((booking, amount))
        elif bucket is EscrowBucket.AVAILABLE_TO_RELEASE:
            releasable.append(amount)
        else:
            pending.append(amount)

    available_balance = sum_money((m for _, m in released), currency)
    pending_escrow = sum_money(pending, currency)
    pipeline_value = sum_money(pipeline, currency)

    if released:
        average = available_balance.amount / Decimal(len(released))
        average_per_booking = Money.of(average, currency).round()
    else:
        average_per_booking = Money.zero(currency)

    windows = period_windows(now)
    return ProviderEarningsSnapshot(
        provider_id=provider_id,
        as_of=now,
        available_balance=available_balance,
        pending_escrow=pending_escrow,
        pipeline_value=pipeline_value,
        total_earning_power=available_balance + pending_escrow + pipeline_value,
        available_to_release=sum_money(releasable, currency),
        average_per_booking=average_per_booking,
        pipeline_bookings=len(pipeline),
        released_bookings=len(released),
        escrow_bookings=len(pending) + len(releasable),
        today=_period(released, windows["today"], currency),
        week=_period(released, windows["week"], currency),
        month=_period(released, windows["month"], currency),
        year=_period(released, windows["year"], currency),
    )


def compute_monthly_earnings(
    bookings: Iterable[BookingInfo],
    now: datetime,
    currency: str,
    months: int = 12,
) -> tuple[MonthlyEarnings, ...]:
    """
    Released earnings per calendar month for the trailing ``months`` months.

    The current month is the last entry.  Months with neither amount nor
    bookings are omitted; growth is month-over-month.
    """
    if months <= 0:
        raise ValueError(f"months must be positive, got {months}")

    # One extra month so the oldest reported month has a growth baseline.
    keys = [
        (start.year, start.month)
        for start in (_month_start(now, back) for back in range(months, -1, -1))
    ]
    totals = {key: Money.zero(currency) for key in keys}
    counts = {key: 0 for key in keys}

    for booking in bookings:
        if classify_escrow(booking, now, timedelta(0)) is not EscrowBucket.RELEASED:
            continue
        key = (booking.completed_at.year, booking.completed_at.month)
        if key in totals and booking.completed_at <= now:
            totals[key] = totals[key] + earned_amount(booking)
            counts[key] += 1

    series: list[MonthlyEarnings] = []
    for previous_key, key in zip(keys, keys[1:]):
        if totals[key].is_zero and counts[key] == 0:
            continue
        series.append(
            MonthlyEarnings(
                year=key[0],
                month=key[1],
                amount=totals[key],
                bookings=counts[key],
                growth=growth_percent(totals[key], totals[previous_key]),
            )
        )
    return tuple(series)


class TransactionType(str, Enum):
    """Provider-facing money movements derived from the booking ledger."""

    PAYMENT = "payment"
    ESCROW_RELEASE = "escrow_release"
    REFUND = "refund"


@dataclass(frozen=True)
class ProviderTransaction:
    """
    One money movement on a provider's account.

    ``amount`` is what moved (the captured total, the released provider
    share, or the refunded total); ``fee`` is the platform commission
    attached to it.  A payment stays ``pending`` until its escrow is
    released.
    """

    id: UUID
    booking_id: UUID
    type: TransactionType
    amount: Money
    fee: Money
    status: str
    occurred_at: datetime
    client_id: str
    service: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "bookingId": str(self.booking_id),
            "type": self.type.value,
            "amount": str(self.amount.amount),
            "fee": str(self.fee.amount),
            "currency": self.amount.currency.code,
            "status": self.status,
            "date": self.occurred_at.isoformat(),
            "client": self.client_id,
            "service": self.service,
        }


_TRANSACTION_TYPES = {
    BookingEventType.PAYMENT_CAPTURED: TransactionType.PAYMENT,
    BookingEventType.ESCROW_RELEASED: TransactionType.ESCROW_RELEASE,
    BookingEventType.CANCELLED: TransactionType.REFUND,
}

# Ledger event types that can become a provider transaction.
TRANSACTION_EVENT_TYPES = frozenset(_TRANSACTION_TYPES)


def provider_transaction(
    event_id: UUID,
    event_type: BookingEventType,
    amount: Money | None,
    occurred_at: datetime,
    booking: BookingInfo,
) -> ProviderTransaction | None:
    """
    Map one ledger event of ``booking`` to a provider transaction.

    Returns None for event types that move no money, and for cancellations
    of unpaid bookings (they carry no amount).
    """
    kind = _TRANSACTION_TYPES.get(event_type)
    if kind is None or amount is None:
        return None

    if kind is TransactionType.REFUND:
        fee = Money.zero(amount.currency.code)
        status = "completed"
    elif kind is TransactionType.ESCROW_RELEASE:
        fee = booking.commission_amount or compute_commission(booking.total_amount, booking.commission_rate)
        status = "completed"
    else:
        fee = booking.commission_amount or compute_commission(amount, booking.commission_rate)
        status = "completed" if booking.escrow_released else "pending"

    return ProviderTransaction(
        id=event_id,
        booking_id=booking.id,
        type=kind,
        amount=amount,
        fee=fee,
        status=status,
        occurred_at=occurred_at,
        client_id=booking.client_id,
        service=booking.title or booking.service_id,
    )
