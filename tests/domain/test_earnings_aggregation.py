"""
Tests for escrow_kernel.domain.earnings -- the provider earnings aggregator.

The snapshot is derived from booking rows alone; these tests feed it
hand-built BookingInfo values and check every bucket, the period windows
and the zero-safe growth rules.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from escrow_kernel.domain.dtos import BookingEventType, BookingInfo
from escrow_kernel.domain.earnings import (
    TransactionType,
    compute_earnings_snapshot,
    compute_monthly_earnings,
    growth_percent,
    period_windows,
    provider_transaction,
)
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money
from escrow_kernel.exceptions import CurrencyMismatchError

# Wednesday
NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
HOLD = timedelta(hours=48)


def ghs(amount: str) -> Money:
    return Money.of(amount, "GHS")


def booking(
    status: BookingStatus,
    provider_amount: str | None,
    *,
    total: str = "100.00",
    is_paid: bool = True,
    completed_at: datetime | None = None,
    escrow_released: bool = False,
    currency: str = "GHS",
) -> BookingInfo:
    return BookingInfo(
        id=uuid4(),
        client_id="client-1",
        provider_id="provider-1",
        service_id="service-1",
        status=status,
        total_amount=Money.of(total, currency),
        commission_rate=Decimal("0.05"),
        commission_amount=None,
        provider_amount=Money.of(provider_amount, currency) if provider_amount else None,
        is_paid=is_paid,
        payment_method="mobile_money" if is_paid else None,
        scheduled_at=None,
        completed_at=completed_at,
        client_confirmed_at=None,
        client_confirm_deadline=None,
        escrow_released=escrow_released,
        escrow_released_at=completed_at + HOLD if escrow_released else None,
        cancelled_at=None,
        cancellation_reason=None,
    )


def released(provider_amount: str, completed_at: datetime) -> BookingInfo:
    return booking(
        BookingStatus.COMPLETED, provider_amount,
        completed_at=completed_at, escrow_released=True,
    )


# =============================================================================
# Snapshot buckets
# =============================================================================


class TestSnapshotBuckets:

    def test_released_pending_and_pipeline(self):
        bookings = [
            released("95.00", NOW - timedelta(days=5)),
            booking(
                BookingStatus.COMPLETED, "47.50", total="50.00",
                completed_at=NOW - timedelta(hours=10),
            ),
            booking(BookingStatus.IN_PROGRESS, "60.00", total="60.00"),
        ]
        snapshot = compute_earnings_snapshot("provider-1", bookings, NOW, HOLD, "GHS")

        assert snapshot.available_balance == ghs("95.00")
        assert snapshot.pending_escrow == ghs("47.50")
        assert snapshot.pipeline_value == ghs("60.00")
        assert snapshot.total_earning_power == ghs("202.50")
        assert snapshot.released_bookings == 1
        assert snapshot.escrow_bookings == 1
        assert snapshot.pipeline_bookings == 1

    def test_empty_booking_set_is_all_zeros(self):
        snapshot = compute_earnings_snapshot("provider-1", [], NOW, HOLD, "GHS")
        assert snapshot.available_balance.is_zero
        assert snapshot.pending_escrow.is_zero
        assert snapshot.pipeline_value.is_zero
        assert snapshot.total_earning_power.is_zero
        assert snapshot.average_per_booking.is_zero
        assert snapshot.today.growth == Decimal("0.00")
        assert snapshot.year.bookings == 0

    def test_unpaid_and_cancelled_bookings_are_ignored(self):
        bookings = [
            booking(BookingStatus.PENDING, None, is_paid=False),
            booking(BookingStatus.CONFIRMED, None, is_paid=False),
            booking(BookingStatus.CANCELLED, "95.00"),
        ]
        snapshot = compute_earnings_snapshot("provider-1", bookings, NOW, HOLD, "GHS")
        assert snapshot.total_earning_power.is_zero

    def test_elapsed_hold_counts_as_pending_escrow_until_released(self):
        old = booking(
            BookingStatus.COMPLETED, "95.00", completed_at=NOW - timedelta(hours=72),
        )
        snapshot = compute_earnings_snapshot("provider-1", [old], NOW, HOLD, "GHS")
        assert snapshot.available_to_release == ghs("95.00")
        assert snapshot.escrow_bookings == 1
        assert snapshot.available_balance.is_zero

    def test_pipeline_projects_unlocked_amount(self):
        in_progress = booking(BookingStatus.IN_PROGRESS, None, total="50.00")
        snapshot = compute_earnings_snapshot("provider-1", [in_progress], NOW, HOLD, "GHS")
        assert snapshot.pipeline_value == ghs("47.50")

    def test_average_per_booking(self):
        bookings = [
            released("95.00", NOW - timedelta(days=3)),
            released("50.00", NOW - timedelta(days=4)),
        ]
        snapshot = compute_earnings_snapshot("provider-1", bookings, NOW, HOLD, "GHS")
        assert snapshot.average_per_booking == ghs("72.50")

    def test_mixed_currency_raises(self):
        bookings = [booking(BookingStatus.IN_PROGRESS, "10.00", currency="USD")]
        with pytest.raises(CurrencyMismatchError):
            compute_earnings_snapshot("provider-1", bookings, NOW, HOLD, "GHS")

    def test_to_dict(self):
        snapshot = compute_earnings_snapshot(
            "provider-1", [released("95.00", NOW - timedelta(hours=2))], NOW, HOLD, "GHS",
        )
        data = snapshot.to_dict()
        assert data["providerId"] == "provider-1"
        assert data["currency"] == "GHS"
        assert data["availableBalance"] == "95.00"
        assert data["today"] == {"amount": "95.00", "bookings": 1, "growth": "100.00"}


# =============================================================================
# Growth and period windows
# =============================================================================


class TestGrowthPercent:

    def test_both_zero(self):
        assert growth_percent(ghs("0"), ghs("0")) == Decimal("0.00")

    def test_previous_zero(self):
        assert growth_percent(ghs("10"), ghs("0")) == Decimal("100.00")

    def test_increase(self):
        assert growth_percent(ghs("150"), ghs("100")) == Decimal("50.00")

    def test_decrease(self):
        assert growth_percent(ghs("50"), ghs("100")) == Decimal("-50.00")

    def test_drop_to_zero(self):
        assert growth_percent(ghs("0"), ghs("80")) == Decimal("-100.00")


class TestPeriodWindows:

    def test_week_starts_on_sunday(self):
        windows = period_windows(NOW)
        assert windows["week"].start == datetime(2024, 3, 3, tzinfo=timezone.utc)
        assert windows["week"].prev_start == datetime(2024, 2, 25, tzinfo=timezone.utc)

    def test_sunday_is_its_own_week_start(self):
        sunday = datetime(2024, 3, 3, 8, 0, tzinfo=timezone.utc)
        assert period_windows(sunday)["week"].start == datetime(2024, 3, 3, tzinfo=timezone.utc)

    def test_month_and_year(self):
        windows = period_windows(NOW)
        assert windows["month"].start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert windows["month"].prev_start == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert windows["year"].start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert windows["year"].prev_start == datetime(2023, 1, 1, tzinfo=timezone.utc)

    def test_january_previous_month_is_december(self):
        windows = period_windows(datetime(2024, 1, 15, tzinfo=timezone.utc))
        assert windows["month"].prev_start == datetime(2023, 12, 1, tzinfo=timezone.utc)

    def test_period_buckets_and_growth(self):
        bookings = [
            released("95.00", datetime(2024, 3, 6, 9, 0, tzinfo=timezone.utc)),
            released("47.50", datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)),
            released("142.50", datetime(2024, 2, 28, 10, 0, tzinfo=timezone.utc)),
        ]
        snapshot = compute_earnings_snapshot("provider-1", bookings, NOW, HOLD, "GHS")

        assert snapshot.today.amount == ghs("95.00")
        assert snapshot.today.bookings == 1
        assert snapshot.today.growth == Decimal("100.00")

        assert snapshot.week.amount == ghs("142.50")
        assert snapshot.week.bookings == 2
        assert snapshot.week.growth == Decimal("0.00")

        assert snapshot.month.amount == ghs("142.50")
        assert snapshot.month.growth == Decimal("0.00")

        assert snapshot.year.amount == ghs("285.00")
        assert snapshot.year.bookings == 3
        assert snapshot.year.growth == Decimal("100.00")


# =============================================================================
# Monthly breakdown
# =============================================================================


class TestMonthlyEarnings:

    def test_months_without_earnings_are_omitted(self):
        bookings = [
            released("95.00", datetime(2024, 1, 10, tzinfo=timezone.utc)),
            released("47.50", datetime(2024, 3, 2, tzinfo=timezone.utc)),
        ]
        series = compute_monthly_earnings(bookings, NOW, "GHS", months=3)

        assert [m.label for m in series] == ["2024-01", "2024-03"]
        assert series[0].amount == ghs("95.00")
        assert series[0].growth == Decimal("100.00")
        assert series[1].bookings == 1
        assert series[1].growth == Decimal("100.00")

    def test_month_over_month_growth(self):
        bookings = [
            released("100.00", datetime(2024, 2, 10, tzinfo=timezone.utc)),
            released("150.00", datetime(2024, 3, 1, tzinfo=timezone.utc)),
        ]
        series = compute_monthly_earnings(bookings, NOW, "GHS", months=2)
        assert series[-1].growth == Decimal("50.00")

    def test_unreleased_bookings_excluded(self):
        pending = booking(
            BookingStatus.COMPLETED, "95.00", completed_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
        )
        assert compute_monthly_earnings([pending], NOW, "GHS") == ()

    def test_months_must_be_positive(self):
        with pytest.raises(ValueError, match="positive"):
            compute_monthly_earnings([], NOW, "GHS", months=0)


class TestProviderTransaction:

    def test_events_without_money_are_ignored(self):
        info = booking(BookingStatus.CONFIRMED, None)
        assert provider_transaction(uuid4(), BookingEventType.ACCEPTED, ghs("100.00"), NOW, info) is None

    def test_cancellation_without_amount_is_ignored(self):
        info = booking(BookingStatus.CANCELLED, None, is_paid=False)
        assert provider_transaction(uuid4(), BookingEventType.CANCELLED, None, NOW, info) is None

    def test_payment_fee_projected_before_commission_is_locked(self):
        info = booking(BookingStatus.IN_PROGRESS, None, total="80.00")

        payment = provider_transaction(uuid4(), BookingEventType.PAYMENT_CAPTURED, ghs("80.00"), NOW, info)

        assert payment.type is TransactionType.PAYMENT
        assert payment.fee == ghs("4.00")
        assert payment.status == "pending"
        assert payment.service == "service-1"
