"""
BookingOrchestrator -- unit of work around the booking services.

The orchestrator ties together:
- BookingLifecycleService: status transitions (flush-only)
- DisputeService: opening and resolving disputes (flush-only)
- NotificationDispatcher: post-commit delivery of the outbox
- Selectors: read paths for bookings and provider earnings

Manages its own transaction boundary.  Every write operation runs in a
fresh session that commits on success and rolls back on failure; a lost
race (optimistic version mismatch or lock failure) is retried from scratch
-- re-read, re-validate the guard, re-attempt -- up to
``max_conflict_attempts`` times before surfacing TransientFailureError.

Notifications are delivered only after the transition has committed, so a
delivery failure can never roll back or fail the transition.

Payment capture is retried together with the rest of the unit of work;
gateways are expected to be idempotent per booking id.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from escrow_kernel.db.engine import session_scope
from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.dtos import (
    BookingInfo,
    DisputeResolution,
    EscrowPolicy,
    RecipientKind,
    TransitionResult,
)
from escrow_kernel.domain.earnings import MonthlyEarnings, ProviderEarningsSnapshot, ProviderTransaction
from escrow_kernel.domain.interfaces import (
    DisputeLookup,
    IdentityResolver,
    NotificationSender,
    PaymentGateway,
    ResolvedParty,
)
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money
from escrow_kernel.exceptions import (
    BookingAccessDeniedError,
    DisputeNotAllowedError,
    EscrowKernelError,
    NotEligibleForConfirmationError,
    PersistenceConflictError,
    TransientFailureError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.selectors.booking_selector import BookingEventDTO, BookingSelector
from escrow_kernel.selectors.earnings_selector import EarningsSelector
from escrow_kernel.services.booking_service import BookingLifecycleService
from escrow_kernel.services.dispute_service import DisputeOpened, DisputeService
from escrow_kernel.services.notification_service import DispatchSummary, NotificationDispatcher

if TYPE_CHECKING:
    from escrow_config.schema import EscrowSettings

logger = get_logger("services.orchestrator")

T = TypeVar("T")

# PostgreSQL SQLSTATEs for serialization_failure, deadlock_detected and
# lock_not_available.
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_conflict(exc: BaseException) -> bool:
    """True if ``exc`` means a concurrent writer won the race for the row."""
    if isinstance(exc, (StaleDataError, PersistenceConflictError)):
        return True
    if isinstance(exc, OperationalError):
        return getattr(exc.orig, "pgcode", None) in _CONFLICT_SQLSTATES
    return False


class BookingOrchestrator:
    """
    Public entry point for booking operations.

    Collaborators are injected; none of them is reached through globals.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        policy: EscrowPolicy | None = None,
        payment_gateway: PaymentGateway | None = None,
        notification_sender: NotificationSender | None = None,
        identity_resolver: IdentityResolver | None = None,
        dispute_lookup: DisputeLookup | None = None,
        max_conflict_attempts: int = 3,
        notification_max_attempts: int = 5,
    ):
        """
        Args:
            session_factory: Opens one session per unit of work.
            clock: Source of ``now`` when a call passes none.
            policy: Currency, default commission rate and hold period.
            payment_gateway: Required for capture_payment_for_booking.
            notification_sender: Delivery channel; without one, outbox rows
                stay PENDING for a later retry_failed_notifications run.
            identity_resolver: Maps user ids to the client or provider they
                act as.  Without one, user ids are taken as entity ids.
            dispute_lookup: Overrides the ``disputes`` table lookup.
            max_conflict_attempts: Attempts per operation on a lost race.
            notification_max_attempts: Delivery attempts per outbox row.
        """
        if max_conflict_attempts < 1:
            raise ValueError("max_conflict_attempts must be at least 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or EscrowPolicy()
        self._payment_gateway = payment_gateway
        self._identity = identity_resolver
        self._dispute_lookup = dispute_lookup
        self._max_attempts = max_conflict_attempts
        self._dispatcher = (
            NotificationDispatcher(
                session_factory, notification_sender, self._clock, notification_max_attempts,
            )
            if notification_sender is not None else None
        )

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker[Session],
        settings: EscrowSettings,
        **collaborators: Any,
    ) -> BookingOrchestrator:
        """
        Build an orchestrator from loaded settings: policy, conflict retry
        ceiling and notification attempt ceiling all come from ``settings``.
        ``collaborators`` are the remaining keyword arguments of __init__.
        """
        return cls(
            session_factory,
            policy=settings.to_policy(),
            max_conflict_attempts=settings.conflict_retry.max_attempts,
            notification_max_attempts=settings.notifications.max_attempts,
            **collaborators,
        )

    @property
    def policy(self) -> EscrowPolicy:
        return self._policy

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def dispatcher(self) -> NotificationDispatcher | None:
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def lifecycle(self, session: Session) -> BookingLifecycleService:
        """Lifecycle service bound to ``session`` with this orchestrator's collaborators."""
        return BookingLifecycleService(
            session, clock=self._clock, policy=self._policy, dispute_lookup=self._dispute_lookup,
        )

    def _run(self, operation: str, booking_id: UUID | None, work: Callable[[Session], T]) -> T:
        context: dict[str, Any] = {"correlation_id": str(uuid4())}
        if booking_id is not None:
            context["booking_id"] = str(booking_id)

        with LogContext.bind(**context):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    with session_scope(self._session_factory) as session:
                        result = work(session)
                except EscrowKernelError as exc:
                    if isinstance(exc, PersistenceConflictError):
                        self._log_conflict(operation, booking_id, attempt, exc)
                        continue
                    logger.warning(
                        "booking_operation_rejected",
                        extra={"operation": operation, "error_code": exc.code, "error": str(exc)},
                    )
                    raise
                except (StaleDataError, OperationalError) as exc:
                    if not is_conflict(exc):
                        raise
                    conflict = PersistenceConflictError("Booking", str(booking_id))
                    self._log_conflict(operation, booking_id, attempt, conflict)
                    continue

                self._dispatch_after_commit(result)
                return result

            logger.error(
                "persistence_conflict_exhausted",
                extra={"operation": operation, "attempts": self._max_attempts},
            )
            raise TransientFailureError(operation, self._max_attempts)

    def _log_conflict(
        self,
        operation: str,
        booking_id: UUID | None,
        attempt: int,
        exc: PersistenceConflictError,
    ) -> None:
        logger.warning(
            "persistence_conflict_retry",
            extra={
                "operation": operation,
                "entity_id": str(booking_id) if booking_id else None,
                "attempt": attempt,
                "max_attempts": self._max_attempts,
                "error_code": exc.code,
            },
        )

    def _dispatch_after_commit(self, result: Any) -> None:
        ids = getattr(result, "notification_ids", ())
        if not ids or self._dispatcher is None:
            return
        try:
            self._dispatcher.dispatch(ids)
        except Exception:
            # rows stay PENDING and are picked up by retry_failed_notifications
            logger.exception("notification_dispatch_error", extra={"notification_count": len(ids)})

    def _now(self, now: datetime | None) -> datetime:
        return now if now is not None else self._clock.now()

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def _resolve(self, user_id: str) -> ResolvedParty | None:
        if self._identity is None:
            return None
        return self._identity.resolve(user_id)

    def _resolve_client(self, booking_id: UUID, user_id: str, error: type[Exception]) -> str:
        if self._identity is None:
            return user_id
        party = self._identity.resolve(user_id)
        if party is None or party.kind is not RecipientKind.CLIENT:
            raise error(str(booking_id), f"user {user_id} is not a client")
        return party.entity_id

    # -------------------------------------------------------------------------
    # Write operations
    # -------------------------------------------------------------------------

    def create_booking(
        self,
        client_id: str,
        provider_id: str,
        service_id: str,
        total_amount: Money | Decimal | str,
        *,
        scheduled_at: datetime | None = None,
        title: str | None = None,
        commission_rate: Decimal | str | None = None,
        now: datetime | None = None,
    ) -> BookingInfo:
        """Create a PENDING booking."""
        if not isinstance(total_amount, Money):
            total_amount = Money.of(total_amount, self._policy.currency)
        now = self._now(now)
        result = self._run(
            "create_booking",
            None,
            lambda session: self.lifecycle(session).create_booking(
                client_id, provider_id, service_id, total_amount,
                scheduled_at=scheduled_at, title=title,
                commission_rate=commission_rate, now=now,
            ),
        )
        return result.booking

    def accept_booking(
        self,
        booking_id: UUID,
        provider_id: str | None = None,
        now: datetime | None = None,
    ) -> BookingInfo:
        now = self._now(now)
        return self._run(
            "accept_booking",
            booking_id,
            lambda session: self.lifecycle(session).accept_booking(booking_id, provider_id, now),
        ).booking

    def capture_payment_for_booking(
        self,
        booking_id: UUID,
        method: str,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> BookingInfo:
        """
        Capture payment and move the booking to IN_PROGRESS.

        Raises:
            InvalidStateTransitionError: booking is not CONFIRMED; its
                ``user_message`` reads "Booking is not ready for payment,
                current status: X".
            PaymentCaptureFailedError: gateway declined; booking stays
                CONFIRMED.
        """
        if self._payment_gateway is None:
            raise RuntimeError("No payment gateway configured")
        gateway = self._payment_gateway
        now = self._now(now)
        return self._run(
            "capture_payment",
            booking_id,
            lambda session: self.lifecycle(session).capture_payment(
                booking_id, method, gateway, details, now,
            ),
        ).booking

    def mark_service_completed(
        self,
        booking_id: UUID,
        requires_confirmation: bool = True,
        now: datetime | None = None,
    ) -> BookingInfo:
        now = self._now(now)
        return self._run(
            "mark_service_completed",
            booking_id,
            lambda session: self.lifecycle(session).mark_service_completed(
                booking_id, requires_confirmation, now,
            ),
        ).booking

    def confirm_by_client(
        self,
        booking_id: UUID,
        user_id: str,
        now: datetime | None = None,
    ) -> BookingInfo:
        """Explicit client confirmation; ``user_id`` must resolve to the booking's client."""
        client_id = self._resolve_client(booking_id, user_id, NotEligibleForConfirmationError)
        now = self._now(now)
        return self._run(
            "confirm_by_client",
            booking_id,
            lambda session: self.lifecycle(session).confirm_by_client(booking_id, client_id, now),
        ).booking

    def auto_confirm(self, booking_id: UUID, now: datetime | None = None) -> BookingInfo | None:
        """Auto-confirm one booking if it is due; None if it was not eligible."""
        now = self._now(now)
        result = self._run(
            "auto_confirm",
            booking_id,
            lambda session: self.lifecycle(session).auto_confirm(booking_id, now),
        )
        return result.booking if result is not None else None

    def cancel_booking(
        self,
        booking_id: UUID,
        reason: str,
        requested_by: str | ResolvedParty,
        now: datetime | None = None,
    ) -> BookingInfo:
        """
        Cancel a non-terminal booking.

        ``requested_by`` is either an already resolved party or a user id
        resolved through the identity collaborator.
        """
        if isinstance(requested_by, ResolvedParty):
            requester = requested_by
        else:
            resolved = self._resolve(requested_by)
            if resolved is None:
                raise BookingAccessDeniedError(str(booking_id), requested_by, "cancel")
            requester = resolved
        now = self._now(now)
        return self._run(
            "cancel_booking",
            booking_id,
            lambda session: self.lifecycle(session).cancel_booking(booking_id, reason, requester, now),
        ).booking

    def open_dispute(
        self,
        booking_id: UUID,
        user_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> DisputeOpened:
        client_id = self._resolve_client(booking_id, user_id, DisputeNotAllowedError)
        now = self._now(now)
        return self._run(
            "open_dispute",
            booking_id,
            lambda session: DisputeService(session, self._clock, self._policy).open_dispute(
                booking_id, client_id, reason, now,
            ),
        )

    def resolve_dispute(
        self,
        booking_id: UUID,
        resolution: DisputeResolution | str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> BookingInfo:
        resolution = DisputeResolution(resolution)
        now = self._now(now)
        result: TransitionResult = self._run(
            "resolve_dispute",
            booking_id,
            lambda session: DisputeService(session, self._clock, self._policy).resolve_dispute(
                booking_id, resolution, actor_id, now,
            ),
        )
        return result.booking

    def release_escrow(self, booking_id: UUID, now: datetime | None = None) -> BookingInfo:
        now = self._now(now)
        return self._run(
            "release_escrow",
            booking_id,
            lambda session: self.lifecycle(session).release_escrow(booking_id, now),
        ).booking

    def retry_failed_notifications(self, now: datetime | None = None, limit: int = 100) -> DispatchSummary:
        if self._dispatcher is None:
            return DispatchSummary()
        return self._dispatcher.retry_failed(now, limit)

    # -------------------------------------------------------------------------
    # Read operations
    # -------------------------------------------------------------------------

    def get_booking(self, booking_id: UUID) -> BookingInfo | None:
        with session_scope(self._session_factory) as session:
            return BookingSelector(session).get(booking_id)

    def get_booking_events(self, booking_id: UUID) -> list[BookingEventDTO]:
        with session_scope(self._session_factory) as session:
            return BookingSelector(session).events_for(booking_id)

    def get_provider_earnings_snapshot(
        self,
        provider_id: str,
        now: datetime | None = None,
    ) -> ProviderEarningsSnapshot:
        now = self._now(now)
        with session_scope(self._session_factory) as session:
            return EarningsSelector(session, self._policy).provider_snapshot(provider_id, now)

    def get_monthly_earnings(
        self,
        provider_id: str,
        now: datetime | None = None,
        months: int = 12,
    ) -> tuple[MonthlyEarnings, ...]:
        now = self._now(now)
        with session_scope(self._session_factory) as session:
            return EarningsSelector(session, self._policy).monthly_earnings(provider_id, now, months)

    def get_provider_transactions(self, provider_id: str, limit: int = 50) -> list[ProviderTransaction]:
        """Recent payments, escrow releases and refunds of a provider, newest first."""
        with session_scope(self._session_factory) as session:
            return EarningsSelector(session, self._policy).provider_transactions(provider_id, limit)

    def list_provider_bookings(
        self,
        provider_id: str,
        statuses: frozenset[BookingStatus] | None = None,
    ) -> list[BookingInfo]:
        with session_scope(self._session_factory) as session:
            return BookingSelector(session).list_for_provider(provider_id, statuses)

    def list_client_bookings(self, client_id: str) -> list[BookingInfo]:
        with session_scope(self._session_factory) as session:
            return BookingSelector(session).list_for_client(client_id)

    def get_booking_counts(self, provider_id: str | None = None) -> dict[BookingStatus, int]:
        """Bookings per status, for one provider or across all of them."""
        with session_scope(self._session_factory) as session:
            return BookingSelector(session).count_by_status(provider_id)
