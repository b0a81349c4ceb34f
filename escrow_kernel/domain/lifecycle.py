"""
Lifecycle -- booking status enum and the legal transition table.

Responsibility:
    Declares every booking status, which operation may move a booking
    between which statuses, and the guard that rejects anything else.
    Services consult this module before writing; they never compare
    status strings themselves.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Forward-only progress: PENDING -> CONFIRMED -> IN_PROGRESS ->
      {AWAITING_CLIENT_CONFIRMATION | COMPLETED} -> COMPLETED.
    - CONFIRMED is never skipped before IN_PROGRESS (payment is only
      captured against an accepted booking).
    - CANCELLED is reachable from every non-terminal status and is
      absorbing; COMPLETED is terminal.
    - No status is ever re-entered once left.

Failure modes:
    - InvalidStateTransitionError carrying current, attempted and expected
      statuses.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from escrow_kernel.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    AWAITING_CLIENT_CONFIRMATION = "AWAITING_CLIENT_CONFIRMATION"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class BookingOperation(str, Enum):
    """Operations that change a booking's status."""

    ACCEPT = "accept"
    CAPTURE_PAYMENT = "capture_payment"
    COMPLETE = "complete"
    CONFIRM = "confirm"
    AUTO_CONFIRM = "auto_confirm"
    CANCEL = "cancel"
    RESOLVE_DISPUTE = "resolve_dispute"


TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
})

# completed_at is non-null exactly when the booking is in one of these.
SERVICE_DELIVERED_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.AWAITING_CLIENT_CONFIRMATION,
    BookingStatus.COMPLETED,
})

# is_paid may only be true in these statuses.
PAID_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.IN_PROGRESS,
    BookingStatus.AWAITING_CLIENT_CONFIRMATION,
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
})

# Paid money that is committed but not yet earned.
PIPELINE_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
})

# Allowed state transitions (from -> set of valid targets)
VALID_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.CONFIRMED, BookingStatus.CANCELLED,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED,
    }),
    BookingStatus.IN_PROGRESS: frozenset({
        BookingStatus.AWAITING_CLIENT_CONFIRMATION,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.AWAITING_CLIENT_CONFIRMATION: frozenset({
        BookingStatus.COMPLETED, BookingStatus.CANCELLED,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Source statuses each operation accepts.
OPERATION_SOURCES: dict[BookingOperation, frozenset[BookingStatus]] = {
    BookingOperation.ACCEPT: frozenset({BookingStatus.PENDING}),
    BookingOperation.CAPTURE_PAYMENT: frozenset({BookingStatus.CONFIRMED}),
    BookingOperation.COMPLETE: frozenset({BookingStatus.IN_PROGRESS}),
    BookingOperation.CONFIRM: frozenset({BookingStatus.AWAITING_CLIENT_CONFIRMATION}),
    BookingOperation.AUTO_CONFIRM: frozenset({BookingStatus.AWAITING_CLIENT_CONFIRMATION}),
    BookingOperation.CANCEL: frozenset({
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
        BookingStatus.IN_PROGRESS,
        BookingStatus.AWAITING_CLIENT_CONFIRMATION,
    }),
    BookingOperation.RESOLVE_DISPUTE: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.AWAITING_CLIENT_CONFIRMATION,
    }),
}

# Target statuses each operation may produce.
OPERATION_TARGETS: dict[BookingOperation, frozenset[BookingStatus]] = {
    BookingOperation.ACCEPT: frozenset({BookingStatus.CONFIRMED}),
    BookingOperation.CAPTURE_PAYMENT: frozenset({BookingStatus.IN_PROGRESS}),
    BookingOperation.COMPLETE: frozenset({
        BookingStatus.AWAITING_CLIENT_CONFIRMATION,
        BookingStatus.COMPLETED,
    }),
    BookingOperation.CONFIRM: frozenset({BookingStatus.COMPLETED}),
    BookingOperation.AUTO_CONFIRM: frozenset({BookingStatus.COMPLETED}),
    BookingOperation.CANCEL: frozenset({BookingStatus.CANCELLED}),
    BookingOperation.RESOLVE_DISPUTE: frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    }),
}


def is_terminal(status: BookingStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    """True if ``target`` is a legal next status from ``current``."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


def require_transition(
    booking_id: str,
    current: BookingStatus,
    target: BookingStatus,
    operation: BookingOperation,
) -> None:
    """
    Guard a transition before any field is written.

    Raises:
        InvalidStateTransitionError: If ``operation`` does not accept
            ``current`` as its source, does not produce ``target``, or the
            table forbids the move.
    """
    sources = OPERATION_SOURCES[operation]
    if (
        current not in sources
        or target not in OPERATION_TARGETS[operation]
        or not can_transition(current, target)
    ):
        raise InvalidStateTransitionError(
            booking_id=booking_id,
            current_status=current.value,
            attempted_status=target.value,
            expected_statuses=sorted(s.value for s in sources),
            operation=operation.value,
        )


def confirmation_deadline(completed_at: datetime, hold_period: timedelta) -> datetime:
    """Deadline for explicit client confirmation: completion plus hold period."""
    return completed_at + hold_period
