"""
Data Transfer Objects for the escrow kernel.

Responsibility:
    Frozen value objects that cross layer boundaries: booking snapshots
    returned by services and selectors, notification requests, recipient
    identities and sweep summaries.  Services never hand ORM rows to
    callers.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money


class RecipientKind(str, Enum):
    """Polymorphic recipient types; they share no common parent key."""

    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class Recipient:
    """Tagged union of notification recipients: ``{kind, id}``."""

    kind: RecipientKind
    id: str

    @classmethod
    def client(cls, client_id: str) -> Recipient:
        return cls(RecipientKind.CLIENT, client_id)

    @classmethod
    def provider(cls, provider_id: str) -> Recipient:
        return cls(RecipientKind.PROVIDER, provider_id)

    @classmethod
    def admin(cls, admin_id: str) -> Recipient:
        return cls(RecipientKind.ADMIN, admin_id)


class NotificationType(str, Enum):
    BOOKING_ACCEPTED = "BOOKING_ACCEPTED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    COMPLETION_AWAITING_CONFIRMATION = "COMPLETION_AWAITING_CONFIRMATION"
    BOOKING_COMPLETED = "BOOKING_COMPLETED"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
    SERVICE_AUTO_CONFIRMED = "SERVICE_AUTO_CONFIRMED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    BOOKING_CANCELLED = "BOOKING_CANCELLED"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    ESCROW_RELEASED = "ESCROW_RELEASED"


class BookingEventType(str, Enum):
    """Kinds of rows in the append-only booking ledger."""

    CREATED = "CREATED"
    ACCEPTED = "ACCEPTED"
    PAYMENT_CAPTURED = "PAYMENT_CAPTURED"
    SERVICE_COMPLETED = "SERVICE_COMPLETED"
    CLIENT_CONFIRMED = "CLIENT_CONFIRMED"
    AUTO_CONFIRMED = "AUTO_CONFIRMED"
    CANCELLED = "CANCELLED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    ESCROW_RELEASED = "ESCROW_RELEASED"


class DisputeResolution(str, Enum):
    """Outcome of the external dispute-resolution path."""

    COMPLETE = "COMPLETE"
    CANCEL = "CANCEL"


@dataclass(frozen=True)
class NotificationRequest:
    """
    A notification a transition wants delivered.

    ``dedupe_key`` identifies the transition event; the outbox stores it
    UNIQUE so each event notifies each recipient at most once.
    """

    recipient: Recipient
    notification_type: NotificationType
    dedupe_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BookingInfo:
    """Immutable snapshot of a booking row."""

    id: UUID
    client_id: str
    provider_id: str
    service_id: str
    status: BookingStatus
    total_amount: Money
    commission_rate: Decimal
    commission_amount: Money | None
    provider_amount: Money | None
    is_paid: bool
    payment_method: str | None
    scheduled_at: datetime | None
    completed_at: datetime | None
    client_confirmed_at: datetime | None
    client_confirm_deadline: datetime | None
    escrow_released: bool
    escrow_released_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    title: str | None = None
    version: int = 1

    @property
    def currency(self) -> str:
        return self.total_amount.currency.code


@dataclass(frozen=True)
class SweepSummary:
    """Result of one auto-confirm sweep run."""

    confirmed_count: int
    checked_count: int
    failed_count: int = 0
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly rendering with integer counts and a boolean flag."""
        return {
            "success": self.success,
            "confirmedCount": self.confirmed_count,
            "checkedCount": self.checked_count,
            "failedCount": self.failed_count,
        }


@dataclass(frozen=True)
class ReleaseSummary:
    """Result of one escrow release sweep run."""

    released_count: int
    checked_count: int
    total_released: Money
    failed_count: int = 0
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "releasedCount": self.released_count,
            "checkedCount": self.checked_count,
            "failedCount": self.failed_count,
            "totalReleased": str(self.total_released.amount),
            "currency": self.total_released.currency.code,
        }


@dataclass(frozen=True)
class EscrowPolicy:
    """
    Kernel-side view of the escrow settings.

    Built from ``escrow_config.EscrowSettings``; the kernel never reads
    configuration itself.
    """

    currency: str = "GHS"
    commission_rate: Decimal = Decimal("0.05")
    hold_period: timedelta = timedelta(hours=48)


@dataclass(frozen=True)
class TransitionResult:
    """A booking after a transition plus the outbox rows it enqueued."""

    booking: BookingInfo
    notification_ids: tuple[UUID, ...] = ()
