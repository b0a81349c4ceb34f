"""
Pure domain layer.

Value objects, the booking state machine, commission arithmetic, escrow
classification and earnings aggregation, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (``now`` is always passed in)
- I/O
"""

from escrow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from escrow_kernel.domain.commission import (
    EarningsSplit,
    compute_commission,
    compute_provider_amount,
    projected_provider_amount,
    split_earnings,
)
from escrow_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from escrow_kernel.domain.dtos import (
    BookingEventType,
    BookingInfo,
    DisputeResolution,
    NotificationRequest,
    NotificationType,
    Recipient,
    RecipientKind,
    ReleaseSummary,
    SweepSummary,
)
from escrow_kernel.domain.earnings import (
    MonthlyEarnings,
    PeriodEarnings,
    ProviderEarningsSnapshot,
    compute_earnings_snapshot,
    compute_monthly_earnings,
    growth_percent,
)
from escrow_kernel.domain.escrow import EscrowBucket, classify_escrow, release_blocker
from escrow_kernel.domain.lifecycle import (
    VALID_TRANSITIONS,
    BookingOperation,
    BookingStatus,
    can_transition,
    require_transition,
)
from escrow_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
    "EarningsSplit",
    "compute_commission",
    "compute_provider_amount",
    "projected_provider_amount",
    "split_earnings",
    "BookingStatus",
    "BookingOperation",
    "VALID_TRANSITIONS",
    "can_transition",
    "require_transition",
    "EscrowBucket",
    "classify_escrow",
    "release_blocker",
    "ProviderEarningsSnapshot",
    "PeriodEarnings",
    "MonthlyEarnings",
    "compute_earnings_snapshot",
    "compute_monthly_earnings",
    "growth_percent",
    "BookingInfo",
    "BookingEventType",
    "DisputeResolution",
    "NotificationRequest",
    "NotificationType",
    "Recipient",
    "RecipientKind",
    "SweepSummary",
    "ReleaseSummary",
]
