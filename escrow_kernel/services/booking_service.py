"""
BookingLifecycleService -- every status-changing booking operation.

Responsibility:
    Reads the booking row under lock, validates the transition guard,
    writes the new status with all of its side-effect fields, appends a
    ledger event and enqueues the notifications the transition implies --
    all inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.  Pure rules come from
    ``domain.lifecycle``, ``domain.commission`` and ``domain.escrow``; this
    module only sequences them against the database.

Invariants enforced:
    - Guard before write: ``require_transition`` runs before any field is
      touched, so a failed guard aborts with nothing applied.
    - Amounts are locked at completion, once, with the booking's own
      commission rate; nothing recomputes them afterwards.
    - ``completed_at`` is set exactly when the booking enters
      AWAITING_CLIENT_CONFIRMATION or COMPLETED and cleared if it is later
      cancelled out of AWAITING_CLIENT_CONFIRMATION.
    - Every transition appends exactly one BookingEventModel row.
    - Flush-only: never commits.  The row lock (FOR UPDATE) plus the
      optimistic ``version`` column serialize writers per booking.

Failure modes:
    - BookingNotFoundError, InvalidStateTransitionError,
      NotEligibleForConfirmationError, BookingAccessDeniedError,
      PaymentCaptureFailedError, EscrowNotReleasableError.
    - StaleDataError from flush if a concurrent writer won the race.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.commission import split_earnings, validate_commission_rate
from escrow_kernel.domain.dtos import (
    BookingEventType,
    DisputeResolution,
    EscrowPolicy,
    NotificationRequest,
    NotificationType,
    Recipient,
    RecipientKind,
    TransitionResult,
)
from escrow_kernel.domain.escrow import release_blocker
from escrow_kernel.domain.interfaces import DisputeLookup, PaymentGateway, ResolvedParty
from escrow_kernel.domain.lifecycle import (
    BookingOperation,
    BookingStatus,
    confirmation_deadline,
    require_transition,
)
from escrow_kernel.domain.values import Money
from escrow_kernel.exceptions import (
    BookingAccessDeniedError,
    BookingNotFoundError,
    CurrencyMismatchError,
    EscrowNotReleasableError,
    InvalidAmountError,
    NotEligibleForConfirmationError,
    PaymentCaptureFailedError,
)
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.models.booking import BookingModel
from escrow_kernel.models.booking_event import BookingEventModel
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.notification_service import NotificationOutboxService

logger = get_logger("services.booking")


def dedupe_key(booking_id: UUID, event: str, recipient: Recipient) -> str:
    """Outbox key identifying one transition event for one recipient."""
    return f"{booking_id}:{event}:{recipient.kind.value}"


class BookingLifecycleService(BaseService[BookingModel]):
    """
    Booking state machine against the database.

    Every public method accepts an optional ``now``; when omitted the
    injected clock supplies it.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: EscrowPolicy | None = None,
        dispute_lookup: DisputeLookup | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or EscrowPolicy()
        if dispute_lookup is None:
            from escrow_kernel.services.dispute_service import SqlDisputeLookup

            dispute_lookup = SqlDisputeLookup(session)
        self._disputes = dispute_lookup
        self._outbox = NotificationOutboxService(session)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _now(self, now: datetime | None) -> datetime:
        return now if now is not None else self._clock.now()

    def load_for_update(self, booking_id: UUID) -> BookingModel:
        """Load the booking row and lock it for the rest of the transaction."""
        booking = self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .with_for_update()
        ).scalar_one_or_none()
        if booking is None:
            raise BookingNotFoundError(str(booking_id))
        return booking

    def _record_event(
        self,
        booking: BookingModel,
        event_type: BookingEventType,
        from_status: BookingStatus | None,
        now: datetime,
        *,
        actor_id: str | None = None,
        amount: Money | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.session.add(
            BookingEventModel(
                booking_id=booking.id,
                event_type=event_type,
                from_status=from_status,
                to_status=booking.status,
                amount_minor=amount.to_minor_units() if amount is not None else None,
                currency=amount.currency.code if amount is not None else None,
                actor_id=actor_id,
                occurred_at=now,
                details=details,
            )
        )

    def _notify(
        self,
        booking: BookingModel,
        event: str,
        notifications: list[tuple[Recipient, NotificationType, dict[str, Any]]],
        now: datetime,
    ) -> tuple[UUID, ...]:
        base_payload = {
            "bookingId": str(booking.id),
            "status": booking.status.value,
        }
        if booking.title:
            base_payload["title"] = booking.title
        requests = [
            NotificationRequest(
                recipient=recipient,
                notification_type=notification_type,
                dedupe_key=dedupe_key(booking.id, event, recipient),
                payload={**base_payload, **payload},
            )
            for recipient, notification_type, payload in notifications
        ]
        return self._outbox.enqueue_all(requests, now)

    def _finish(
        self,
        booking: BookingModel,
        operation: str,
        from_status: BookingStatus | None,
        notification_ids: tuple[UUID, ...],
    ) -> TransitionResult:
        self.session.flush()
        logger.info(
            "booking_transitioned",
            extra={
                "booking_id": str(booking.id),
                "operation": operation,
                "from_status": from_status.value if from_status else None,
                "to_status": booking.status.value,
                "version": booking.version,
            },
        )
        return TransitionResult(booking=booking.to_info(), notification_ids=notification_ids)

    def _lock_amounts(self, booking: BookingModel) -> None:
        if booking.amounts_locked:
            return
        split = split_earnings(booking.total_amount, booking.commission_rate)
        booking.lock_amounts(split.commission_amount, split.provider_amount)
        logger.info(
            "booking_amounts_locked",
            extra={
                "booking_id": str(booking.id),
                "total_amount": str(split.total_amount.amount),
                "commission_amount": str(split.commission_amount.amount),
                "provider_amount": str(split.provider_amount.amount),
                "commission_rate": str(split.commission_rate),
            },
        )

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_booking(
        self,
        client_id: str,
        provider_id: str,
        service_id: str,
        total_amount: Money,
        *,
        scheduled_at: datetime | None = None,
        title: str | None = None,
        commission_rate: Decimal | str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Create a booking in PENDING with its commission rate fixed."""
        now = self._now(now)
        if total_amount.currency.code != self._policy.currency:
            raise CurrencyMismatchError(self._policy.currency, total_amount.currency.code)
        if total_amount.is_negative:
            raise InvalidAmountError(str(total_amount.amount), "booking total must not be negative")
        rate = validate_commission_rate(
            commission_rate if commission_rate is not None else self._policy.commission_rate
        )

        booking = BookingModel(
            client_id=client_id,
            provider_id=provider_id,
            service_id=service_id,
            title=title,
            status=BookingStatus.PENDING,
            currency=total_amount.currency.code,
            total_amount_minor=total_amount.to_minor_units(),
            commission_rate=rate,
            is_paid=False,
            escrow_released=False,
            scheduled_at=scheduled_at,
        )
        self.session.add(booking)
        self.session.flush()
        self._record_event(
            booking, BookingEventType.CREATED, None, now,
            actor_id=actor_id or client_id, amount=booking.total_amount,
        )
        return self._finish(booking, "create", None, ())

    # -------------------------------------------------------------------------
    # Forward transitions
    # -------------------------------------------------------------------------

    def accept_booking(
        self,
        booking_id: UUID,
        provider_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """PENDING -> CONFIRMED on provider acceptance."""
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        if provider_id is not None and provider_id != booking.provider_id:
            raise BookingAccessDeniedError(str(booking_id), provider_id, "accept")
        from_status = booking.status
        require_transition(str(booking_id), from_status, BookingStatus.CONFIRMED, BookingOperation.ACCEPT)

        booking.status = BookingStatus.CONFIRMED
        self._record_event(booking, BookingEventType.ACCEPTED, from_status, now,
                           actor_id=provider_id or booking.provider_id)
        ids = self._notify(booking, BookingEventType.ACCEPTED.value, [
            (Recipient.client(booking.client_id), NotificationType.BOOKING_ACCEPTED, {}),
        ], now)
        return self._finish(booking, "accept", from_status, ids)

    def capture_payment(
        self,
        booking_id: UUID,
        method: str,
        gateway: PaymentGateway,
        details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        CONFIRMED -> IN_PROGRESS once the payment capability succeeds.

        The guard runs before the gateway is called, so an unaccepted
        booking is never charged.  A declined capture raises
        PaymentCaptureFailedError and leaves the booking CONFIRMED.
        """
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        from_status = booking.status
        require_transition(
            str(booking_id), from_status, BookingStatus.IN_PROGRESS, BookingOperation.CAPTURE_PAYMENT,
        )

        result = gateway.capture_payment(booking.id, method, dict(details or {}))
        if not result.succeeded:
            logger.warning(
                "payment_capture_failed",
                extra={
                    "booking_id": str(booking.id),
                    "payment_method": method,
                    "reason": result.failure_reason,
                },
            )
            raise PaymentCaptureFailedError(str(booking.id), method, result.failure_reason)

        booking.is_paid = True
        booking.payment_method = method
        booking.payment_reference = result.reference
        booking.status = BookingStatus.IN_PROGRESS
        self._record_event(
            booking, BookingEventType.PAYMENT_CAPTURED, from_status, now,
            actor_id=booking.client_id, amount=booking.total_amount,
            details={"payment_method": method, "reference": result.reference},
        )
        ids = self._notify(booking, BookingEventType.PAYMENT_CAPTURED.value, [
            (Recipient.provider(booking.provider_id), NotificationType.PAYMENT_CAPTURED,
             {"amount": str(booking.total_amount.amount), "currency": booking.currency}),
        ], now)
        return self._finish(booking, "capture_payment", from_status, ids)

    def mark_service_completed(
        self,
        booking_id: UUID,
        requires_confirmation: bool = True,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        IN_PROGRESS -> AWAITING_CLIENT_CONFIRMATION (or COMPLETED).

        Sets ``completed_at`` and locks commission and provider amounts in
        both branches; the confirmation deadline is set only when client
        sign-off is required.
        """
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        from_status = booking.status
        target = (
            BookingStatus.AWAITING_CLIENT_CONFIRMATION if requires_confirmation
            else BookingStatus.COMPLETED
        )
        require_transition(str(booking_id), from_status, target, BookingOperation.COMPLETE)

        booking.status = target
        booking.completed_at = now
        if requires_confirmation:
            booking.client_confirm_deadline = confirmation_deadline(now, self._policy.hold_period)
        self._lock_amounts(booking)

        self._record_event(
            booking, BookingEventType.SERVICE_COMPLETED, from_status, now,
            actor_id=booking.provider_id, amount=booking.provider_amount,
            details={"requires_confirmation": requires_confirmation},
        )
        if requires_confirmation:
            notifications = [
                (Recipient.client(booking.client_id), NotificationType.COMPLETION_AWAITING_CONFIRMATION,
                 {"confirmDeadline": booking.client_confirm_deadline.isoformat()}),
            ]
        else:
            notifications = [
                (Recipient.client(booking.client_id), NotificationType.BOOKING_COMPLETED, {}),
                (Recipient.provider(booking.provider_id), NotificationType.BOOKING_COMPLETED,
                 {"providerAmount": str(booking.provider_amount.amount)}),
            ]
        ids = self._notify(booking, BookingEventType.SERVICE_COMPLETED.value, notifications, now)
        return self._finish(booking, "complete", from_status, ids)

    def confirm_by_client(
        self,
        booking_id: UUID,
        client_id: str,
        now: datetime | None = None,
    ) -> TransitionResult:
        """AWAITING_CLIENT_CONFIRMATION -> COMPLETED by the booking's own client."""
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        if booking.client_id != client_id:
            raise NotEligibleForConfirmationError(str(booking_id), "booking belongs to another client")
        if booking.status != BookingStatus.AWAITING_CLIENT_CONFIRMATION:
            raise NotEligibleForConfirmationError(
                str(booking_id),
                f"booking is {booking.status.value}, expected AWAITING_CLIENT_CONFIRMATION",
            )
        if self._disputes.has_open_dispute(booking.id):
            raise NotEligibleForConfirmationError(str(booking_id), "booking has an open dispute")

        from_status = booking.status
        require_transition(str(booking_id), from_status, BookingStatus.COMPLETED, BookingOperation.CONFIRM)
        booking.status = BookingStatus.COMPLETED
        booking.client_confirmed_at = now

        self._record_event(booking, BookingEventType.CLIENT_CONFIRMED, from_status, now, actor_id=client_id)
        ids = self._notify(booking, BookingEventType.CLIENT_CONFIRMED.value, [
            (Recipient.client(booking.client_id), NotificationType.BOOKING_CONFIRMED, {}),
            (Recipient.provider(booking.provider_id), NotificationType.BOOKING_CONFIRMED,
             {"providerAmount": str(booking.provider_amount.amount)}),
        ], now)
        return self._finish(booking, "confirm", from_status, ids)

    def auto_confirm(self, booking_id: UUID, now: datetime | None = None) -> TransitionResult | None:
        """
        Deadline-driven AWAITING_CLIENT_CONFIRMATION -> COMPLETED.

        Re-checks eligibility under the row lock and returns None (nothing
        written) if the booking is no longer awaiting confirmation, its
        deadline has not passed, or a dispute is open.
        """
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        if booking.status != BookingStatus.AWAITING_CLIENT_CONFIRMATION:
            logger.debug("auto_confirm_skipped", extra={"booking_id": str(booking_id),
                                                        "reason": f"status {booking.status.value}"})
            return None
        if booking.client_confirm_deadline is None or booking.client_confirm_deadline > now:
            logger.debug("auto_confirm_skipped", extra={"booking_id": str(booking_id),
                                                        "reason": "deadline not reached"})
            return None
        if self._disputes.has_open_dispute(booking.id):
            logger.info("auto_confirm_skipped", extra={"booking_id": str(booking_id),
                                                       "reason": "open dispute"})
            return None

        from_status = booking.status
        require_transition(str(booking_id), from_status, BookingStatus.COMPLETED, BookingOperation.AUTO_CONFIRM)
        booking.status = BookingStatus.COMPLETED
        booking.client_confirmed_at = now

        self._record_event(
            booking, BookingEventType.AUTO_CONFIRMED, from_status, now,
            details={"deadline": booking.client_confirm_deadline.isoformat()},
        )
        ids = self._notify(booking, BookingEventType.AUTO_CONFIRMED.value, [
            (Recipient.client(booking.client_id), NotificationType.SERVICE_AUTO_CONFIRMED,
             {"title": "Service Auto-Confirmed"}),
            (Recipient.provider(booking.provider_id), NotificationType.PAYMENT_RELEASED,
             {"providerAmount": str(booking.provider_amount.amount), "currency": booking.currency}),
        ], now)
        return self._finish(booking, "auto_confirm", from_status, ids)

    # -------------------------------------------------------------------------
    # Cancellation and disputes
    # -------------------------------------------------------------------------

    def _authorize_cancel(self, booking: BookingModel, requester: ResolvedParty) -> None:
        allowed = (
            requester.kind is RecipientKind.ADMIN
            or (requester.kind is RecipientKind.CLIENT and requester.entity_id == booking.client_id)
            or (requester.kind is RecipientKind.PROVIDER and requester.entity_id == booking.provider_id)
        )
        if not allowed:
            raise BookingAccessDeniedError(str(booking.id), requester.entity_id, "cancel")

    def _apply_cancellation(self, booking: BookingModel, reason: str, now: datetime) -> None:
        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        # completed_at is only meaningful while the service counts as delivered
        booking.completed_at = None
        booking.client_confirm_deadline = None

    def cancel_booking(
        self,
        booking_id: UUID,
        reason: str,
        requester: ResolvedParty,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Any non-terminal status -> CANCELLED; paid bookings request a refund."""
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        self._authorize_cancel(booking, requester)
        from_status = booking.status
        require_transition(str(booking_id), from_status, BookingStatus.CANCELLED, BookingOperation.CANCEL)

        self._apply_cancellation(booking, reason, now)
        self._record_event(
            booking, BookingEventType.CANCELLED, from_status, now,
            actor_id=requester.entity_id,
            amount=booking.total_amount if booking.is_paid else None,
            details={"reason": reason, "requested_by": requester.kind.value},
        )
        notifications: list[tuple[Recipient, NotificationType, dict[str, Any]]] = [
            (Recipient.client(booking.client_id), NotificationType.BOOKING_CANCELLED, {"reason": reason}),
            (Recipient.provider(booking.provider_id), NotificationType.BOOKING_CANCELLED, {"reason": reason}),
        ]
        ids = self._notify(booking, BookingEventType.CANCELLED.value, notifications, now)
        if booking.is_paid:
            ids += self._notify(booking, NotificationType.REFUND_REQUESTED.value, [
                (Recipient.client(booking.client_id), NotificationType.REFUND_REQUESTED,
                 {"amount": str(booking.total_amount.amount), "currency": booking.currency}),
            ], now)
        return self._finish(booking, "cancel", from_status, ids)

    def apply_dispute_resolution(
        self,
        booking: BookingModel,
        resolution: DisputeResolution,
        dispute_id: UUID,
        actor_id: str | None,
        now: datetime,
    ) -> TransitionResult:
        """
        Force the booking's outcome after a dispute is resolved.

        COMPLETE moves IN_PROGRESS/AWAITING_CLIENT_CONFIRMATION to COMPLETED
        (a COMPLETED booking stays as is); CANCEL moves them to CANCELLED.
        The caller has already locked ``booking``.
        """
        from_status = booking.status
        if resolution is DisputeResolution.COMPLETE:
            if from_status != BookingStatus.COMPLETED:
                require_transition(
                    str(booking.id), from_status, BookingStatus.COMPLETED, BookingOperation.RESOLVE_DISPUTE,
                )
                booking.status = BookingStatus.COMPLETED
                if booking.completed_at is None:
                    booking.completed_at = now
                self._lock_amounts(booking)
        else:
            require_transition(
                str(booking.id), from_status, BookingStatus.CANCELLED, BookingOperation.RESOLVE_DISPUTE,
            )
            self._apply_cancellation(booking, "dispute resolved: cancelled", now)

        self._record_event(
            booking, BookingEventType.DISPUTE_RESOLVED, from_status, now,
            actor_id=actor_id,
            details={"resolution": resolution.value, "dispute_id": str(dispute_id)},
        )
        event = f"{BookingEventType.DISPUTE_RESOLVED.value}.{dispute_id}"
        payload = {"resolution": resolution.value}
        ids = self._notify(booking, event, [
            (Recipient.client(booking.client_id), NotificationType.DISPUTE_RESOLVED, payload),
            (Recipient.provider(booking.provider_id), NotificationType.DISPUTE_RESOLVED, payload),
        ], now)
        if resolution is DisputeResolution.CANCEL and booking.is_paid:
            ids += self._notify(booking, NotificationType.REFUND_REQUESTED.value, [
                (Recipient.client(booking.client_id), NotificationType.REFUND_REQUESTED,
                 {"amount": str(booking.total_amount.amount), "currency": booking.currency}),
            ], now)
        return self._finish(booking, "resolve_dispute", from_status, ids)

    # -------------------------------------------------------------------------
    # Escrow release
    # -------------------------------------------------------------------------

    def release_escrow(self, booking_id: UUID, now: datetime | None = None) -> TransitionResult:
        """
        Mark a COMPLETED booking's provider amount as released.

        Raises:
            EscrowNotReleasableError: naming the first unmet condition.
        """
        now = self._now(now)
        booking = self.load_for_update(booking_id)
        with LogContext.bind(booking_id=str(booking.id)):
            blocker = release_blocker(
                booking.to_info(), now, self._policy.hold_period,
                self._disputes.has_open_dispute(booking.id),
            )
            if blocker is not None:
                raise EscrowNotReleasableError(str(booking_id), blocker)

            booking.escrow_released = True
            booking.escrow_released_at = now
            self._record_event(
                booking, BookingEventType.ESCROW_RELEASED, booking.status, now,
                amount=booking.provider_amount,
            )
            ids = self._notify(booking, BookingEventType.ESCROW_RELEASED.value, [
                (Recipient.provider(booking.provider_id), NotificationType.ESCROW_RELEASED,
                 {"amount": str(booking.provider_amount.amount), "currency": booking.currency}),
            ], now)
            return self._finish(booking, "release_escrow", booking.status, ids)
