"""Selectors for the escrow kernel (read side)."""

from escrow_kernel.selectors.booking_selector import BookingEventDTO, BookingSelector
from escrow_kernel.selectors.earnings_selector import EarningsSelector

__all__ = [
    "BookingEventDTO",
    "BookingSelector",
    "EarningsSelector",
]
