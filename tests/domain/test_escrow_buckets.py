"""
Tests for escrow_kernel.domain.escrow.

Every paid, completed booking lands in exactly one bucket (RELEASED,
AVAILABLE_TO_RELEASE or PENDING_ESCROW); release_blocker names the first
unmet release condition.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from escrow_kernel.domain.dtos import BookingInfo
from escrow_kernel.domain.escrow import (
    EscrowBucket,
    classify_escrow,
    earned_amount,
    is_escrow_candidate,
    release_blocker,
)
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money

NOW = datetime(2024, 3, 6, 12, 0, tzinfo=timezone.utc)
HOLD = timedelta(hours=48)


def completed_booking(**overrides) -> BookingInfo:
    """A paid COMPLETED booking with locked amounts, completed 10 hours ago."""
    values = dict(
        id=uuid4(),
        client_id="client-1",
        provider_id="provider-1",
        service_id="service-1",
        status=BookingStatus.COMPLETED,
        total_amount=Money.of("100.00", "GHS"),
        commission_rate=Decimal("0.05"),
        commission_amount=Money.of("5.00", "GHS"),
        provider_amount=Money.of("95.00", "GHS"),
        is_paid=True,
        payment_method="mobile_money",
        scheduled_at=None,
        completed_at=NOW - timedelta(hours=10),
        client_confirmed_at=NOW - timedelta(hours=9),
        client_confirm_deadline=None,
        escrow_released=False,
        escrow_released_at=None,
        cancelled_at=None,
        cancellation_reason=None,
    )
    values.update(overrides)
    return BookingInfo(**values)


class TestClassifyEscrow:

    def test_inside_hold_window_is_pending(self):
        assert classify_escrow(completed_booking(), NOW, HOLD) is EscrowBucket.PENDING_ESCROW

    def test_hold_elapsed_is_available(self):
        booking = completed_booking(completed_at=NOW - timedelta(hours=49))
        assert classify_escrow(booking, NOW, HOLD) is EscrowBucket.AVAILABLE_TO_RELEASE

    def test_exactly_at_hold_boundary_is_available(self):
        booking = completed_booking(completed_at=NOW - HOLD)
        assert classify_escrow(booking, NOW, HOLD) is EscrowBucket.AVAILABLE_TO_RELEASE

    def test_released(self):
        booking = completed_booking(escrow_released=True, escrow_released_at=NOW)
        assert classify_escrow(booking, NOW, HOLD) is EscrowBucket.RELEASED

    def test_awaiting_confirmation_is_pending(self):
        booking = completed_booking(status=BookingStatus.AWAITING_CLIENT_CONFIRMATION)
        assert classify_escrow(booking, NOW, HOLD) is EscrowBucket.PENDING_ESCROW

    def test_unpaid_belongs_to_no_bucket(self):
        assert classify_escrow(completed_booking(is_paid=False), NOW, HOLD) is None

    @pytest.mark.parametrize(
        "status",
        [BookingStatus.IN_PROGRESS, BookingStatus.CONFIRMED, BookingStatus.CANCELLED],
    )
    def test_not_delivered_belongs_to_no_bucket(self, status):
        booking = completed_booking(status=status, completed_at=None)
        assert not is_escrow_candidate(booking)
        assert classify_escrow(booking, NOW, HOLD) is None

    def test_confirming_early_does_not_shorten_hold(self):
        booking = completed_booking(
            completed_at=NOW - timedelta(hours=1),
            client_confirmed_at=NOW - timedelta(minutes=30),
        )
        assert classify_escrow(booking, NOW, HOLD) is EscrowBucket.PENDING_ESCROW


class TestEarnedAmount:

    def test_uses_locked_provider_amount(self):
        assert earned_amount(completed_booking()) == Money.of("95.00", "GHS")

    def test_projects_when_not_locked(self):
        booking = completed_booking(
            total_amount=Money.of("50.00", "GHS"), commission_amount=None, provider_amount=None,
        )
        assert earned_amount(booking) == Money.of("47.50", "GHS")


class TestReleaseBlocker:

    def test_releasable(self):
        booking = completed_booking(completed_at=NOW - timedelta(hours=48))
        assert release_blocker(booking, NOW, HOLD, has_open_dispute=False) is None

    def test_awaiting_confirmation_not_releasable(self):
        booking = completed_booking(
            status=BookingStatus.AWAITING_CLIENT_CONFIRMATION,
            completed_at=NOW - timedelta(hours=72),
        )
        reason = release_blocker(booking, NOW, HOLD, has_open_dispute=False)
        assert reason == "booking status is AWAITING_CLIENT_CONFIRMATION, expected COMPLETED"

    def test_unlocked_amounts_not_releasable(self):
        booking = completed_booking(
            completed_at=NOW - timedelta(hours=72), provider_amount=None, commission_amount=None,
        )
        assert release_blocker(booking, NOW, HOLD, False) == "provider amount has not been locked"

    def test_already_released(self):
        booking = completed_booking(
            completed_at=NOW - timedelta(hours=72), escrow_released=True, escrow_released_at=NOW,
        )
        assert release_blocker(booking, NOW, HOLD, False) == "escrow already released"

    def test_open_dispute(self):
        booking = completed_booking(completed_at=NOW - timedelta(hours=72))
        assert release_blocker(booking, NOW, HOLD, True) == "booking has an open dispute"

    def test_hold_not_elapsed(self):
        reason = release_blocker(completed_booking(), NOW, HOLD, False)
        assert reason.startswith("hold period not elapsed")

    def test_unpaid(self):
        booking = replace(completed_booking(completed_at=NOW - timedelta(hours=72)), is_paid=False)
        assert release_blocker(booking, NOW, HOLD, False) == "booking is not paid"
