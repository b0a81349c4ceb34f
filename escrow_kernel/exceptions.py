"""
Typed Exception Hierarchy for the Escrow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers render booking errors to clients and providers, retry concurrency
conflicts, and isolate sweep failures.  Each of those decisions is made by
exception TYPE, never by parsing a message:

    try:
        orchestrator.capture_payment_for_booking(booking_id, "momo")
    except InvalidStateTransitionError as e:
        return {"error": e.user_message, "code": e.code}, 409
    except PaymentCaptureFailedError as e:
        return {"error": str(e), "code": e.code}, 402

Every exception has:
  1. A ``code`` class attribute (machine-readable, API-safe)
  2. Structured attributes (booking id, statuses, reasons)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    EscrowKernelError (base)
    |
    +-- BookingError
    |   +-- BookingNotFoundError
    |   +-- InvalidStateTransitionError
    |   +-- NotEligibleForConfirmationError
    |   +-- BookingAccessDeniedError
    |   +-- EscrowNotReleasableError
    |   +-- DisputeNotAllowedError
    |   +-- DisputeNotFoundError
    |
    +-- PaymentError
    |   +-- PaymentCaptureFailedError
    |
    +-- ConcurrencyError
    |   +-- PersistenceConflictError
    |   +-- TransientFailureError
    |
    +-- NotificationError
    |   +-- NotificationDispatchFailedError
    |
    +-- MoneyError
    |   +-- CurrencyMismatchError
    |   +-- InvalidAmountError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
PROPAGATION
===============================================================================

    BookingError / PaymentError -> reported to the caller, never retried
    PersistenceConflictError    -> retried from scratch by the orchestrator,
                                   then surfaced as TransientFailureError
    NotificationError           -> logged and recorded on the outbox row only
    SQLAlchemy errors           -> not wrapped; fail the operation loudly
                                   (isolated per booking inside sweeps)
"""

from collections.abc import Iterable


class EscrowKernelError(Exception):
    """
    Base exception for all escrow kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ESCROW_KERNEL_ERROR"


# Booking-related exceptions


class BookingError(EscrowKernelError):
    """Base exception for booking domain errors."""

    code: str = "BOOKING_ERROR"


class BookingNotFoundError(BookingError):
    """Booking with given ID was not found."""

    code: str = "BOOKING_NOT_FOUND"

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found: {booking_id}")


# Human phrasing per lifecycle operation for user-facing messages.
_OPERATION_PHRASES = {
    "accept": "acceptance",
    "capture_payment": "payment",
    "complete": "completion",
    "confirm": "confirmation",
    "auto_confirm": "auto-confirmation",
    "cancel": "cancellation",
    "resolve_dispute": "dispute resolution",
}


class InvalidStateTransitionError(BookingError):
    """
    A lifecycle transition was attempted from the wrong source state.

    Never retried automatically and never fatal to the process.
    """

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        booking_id: str,
        current_status: str,
        attempted_status: str,
        expected_statuses: Iterable[str] = (),
        operation: str | None = None,
    ):
        self.booking_id = booking_id
        self.current_status = current_status
        self.attempted_status = attempted_status
        self.expected_statuses = tuple(expected_statuses)
        self.operation = operation
        expected = ", ".join(self.expected_statuses) or "none"
        super().__init__(
            f"Booking {booking_id} cannot move from {current_status} to "
            f"{attempted_status} (expected current status: {expected})"
        )

    @property
    def user_message(self) -> str:
        """Message suitable for showing to the client or provider."""
        phrase = _OPERATION_PHRASES.get(self.operation or "", "this action")
        return (
            f"Booking is not ready for {phrase}, "
            f"current status: {self.current_status}"
        )


class NotEligibleForConfirmationError(BookingError):
    """Confirmation attempted by the wrong party or in the wrong state."""

    code: str = "NOT_ELIGIBLE_FOR_CONFIRMATION"

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Booking {booking_id} cannot be confirmed: {reason}")


class BookingAccessDeniedError(BookingError):
    """The requesting party does not own the booking."""

    code: str = "BOOKING_ACCESS_DENIED"

    def __init__(self, booking_id: str, user_id: str, operation: str):
        self.booking_id = booking_id
        self.user_id = user_id
        self.operation = operation
        super().__init__(
            f"User {user_id} is not allowed to {operation} booking {booking_id}"
        )


class EscrowNotReleasableError(BookingError):
    """Escrow release requested for a booking that is not eligible."""

    code: str = "ESCROW_NOT_RELEASABLE"

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Escrow for booking {booking_id} cannot be released: {reason}")


class DisputeNotAllowedError(BookingError):
    """A dispute cannot be opened for this booking."""

    code: str = "DISPUTE_NOT_ALLOWED"

    def __init__(self, booking_id: str, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Cannot open dispute on booking {booking_id}: {reason}")


class DisputeNotFoundError(BookingError):
    """No open dispute exists for the booking."""

    code: str = "DISPUTE_NOT_FOUND"

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"No open dispute for booking {booking_id}")


# Payment-related exceptions


class PaymentError(EscrowKernelError):
    """Base exception for payment capability errors."""

    code: str = "PAYMENT_ERROR"


class PaymentCaptureFailedError(PaymentError):
    """The payment capability declined the capture; booking stays CONFIRMED."""

    code: str = "PAYMENT_CAPTURE_FAILED"

    def __init__(self, booking_id: str, payment_method: str, reason: str | None = None):
        self.booking_id = booking_id
        self.payment_method = payment_method
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(
            f"Payment capture via {payment_method} failed for booking {booking_id}{detail}"
        )


# Concurrency-related exceptions


class ConcurrencyError(EscrowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class PersistenceConflictError(ConcurrencyError):
    """A concurrent writer changed the booking first."""

    code: str = "PERSISTENCE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class TransientFailureError(ConcurrencyError):
    """Conflict retries exhausted; the caller may try again later."""

    code: str = "TRANSIENT_FAILURE"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempt(s) due to concurrent updates"
        )


# Notification-related exceptions


class NotificationError(EscrowKernelError):
    """Base exception for notification delivery errors."""

    code: str = "NOTIFICATION_ERROR"


class NotificationDispatchFailedError(NotificationError):
    """A notification could not be delivered. Logged, never propagated."""

    code: str = "NOTIFICATION_DISPATCH_FAILED"

    def __init__(self, notification_id: str, reason: str):
        self.notification_id = notification_id
        self.reason = reason
        super().__init__(f"Notification {notification_id} dispatch failed: {reason}")


# Money-related exceptions


class MoneyError(EscrowKernelError, ValueError):
    """Base exception for monetary arithmetic errors."""

    code: str = "MONEY_ERROR"


class CurrencyMismatchError(MoneyError):
    """Arithmetic attempted across different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch: expected {expected}, got {actual}")


class InvalidAmountError(MoneyError):
    """Amount or rate is outside its allowed range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid amount {value}: {reason}")


# Immutability-related exceptions


class ImmutabilityError(EscrowKernelError):
    """Base exception for append-only violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Update or delete attempted on an append-only ledger row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
