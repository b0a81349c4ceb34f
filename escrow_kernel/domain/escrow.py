"""
Escrow -- classify earned provider amounts by hold-period state.

Responsibility:
    For a single booking, decide which escrow bucket its provider amount
    falls into as of ``now``:

        RELEASED               escrow_released is true
        AVAILABLE_TO_RELEASE   not released, hold period has elapsed
        PENDING_ESCROW         not released, still inside the hold window

    Bookings that are unpaid or have no ``completed_at`` belong to no
    bucket (they are pipeline or nothing).  Also decides whether a booking
    may be released now and, if not, why.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ``now`` is always
    an explicit argument.

Invariants enforced:
    - Every paid, completed booking lands in exactly one bucket.
    - The hold period protects the payment independently of the client's
      explicit confirmation: confirming early does not shorten it.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from escrow_kernel.domain.commission import projected_provider_amount
from escrow_kernel.domain.dtos import BookingInfo
from escrow_kernel.domain.lifecycle import BookingStatus, SERVICE_DELIVERED_STATUSES
from escrow_kernel.domain.values import Money


class EscrowBucket(str, Enum):
    RELEASED = "RELEASED"
    AVAILABLE_TO_RELEASE = "AVAILABLE_TO_RELEASE"
    PENDING_ESCROW = "PENDING_ESCROW"


def is_escrow_candidate(booking: BookingInfo) -> bool:
    """Paid and completed: the booking's provider amount has been earned."""
    return (
        booking.is_paid
        and booking.completed_at is not None
        and booking.status in SERVICE_DELIVERED_STATUSES
    )


def classify_escrow(
    booking: BookingInfo,
    now: datetime,
    hold_period: timedelta,
) -> EscrowBucket | None:
    """Return the booking's escrow bucket, or None if it is not earned yet."""
    if not is_escrow_candidate(booking):
        return None
    if booking.escrow_released:
        return EscrowBucket.RELEASED
    if now - booking.completed_at >= hold_period:
        return EscrowBucket.AVAILABLE_TO_RELEASE
    return EscrowBucket.PENDING_ESCROW


def earned_amount(booking: BookingInfo) -> Money:
    """Provider amount the escrow buckets account for."""
    return projected_provider_amount(
        booking.total_amount,
        booking.provider_amount,
        booking.commission_amount,
        booking.commission_rate,
    )


def release_blocker(
    booking: BookingInfo,
    now: datetime,
    hold_period: timedelta,
    has_open_dispute: bool,
) -> str | None:
    """
    Reason the booking's escrow cannot be released now, or None if it can.

    Release requires a COMPLETED, paid booking with locked amounts whose
    hold period has elapsed, that is not already released and has no open
    dispute.
    """
    if booking.status != BookingStatus.COMPLETED:
        return f"booking status is {booking.status.value}, expected COMPLETED"
    if not booking.is_paid:
        return "booking is not paid"
    if booking.provider_amount is None or booking.completed_at is None:
        return "provider amount has not been locked"
    if booking.escrow_released:
        return "escrow already released"
    if has_open_dispute:
        return "booking has an open dispute"
    if now - booking.completed_at < hold_period:
        remaining = hold_period - (now - booking.completed_at)
        return f"hold period not elapsed ({remaining} remaining)"
    return None
