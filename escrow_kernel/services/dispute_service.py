"""
Dispute service and the database-backed DisputeLookup.

Disputes are deliberately thin: a client raises one on a delivered booking,
it blocks auto-confirmation and escrow release while open, and an operator
resolves it by forcing the booking to COMPLETED or CANCELLED.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.dtos import (
    BookingEventType,
    DisputeResolution,
    EscrowPolicy,
    NotificationRequest,
    NotificationType,
    Recipient,
    TransitionResult,
)
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.exceptions import (
    DisputeNotAllowedError,
    DisputeNotFoundError,
    InvalidStateTransitionError,
)
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.booking_event import BookingEventModel
from escrow_kernel.models.dispute import DisputeModel, DisputeStatus
from escrow_kernel.services.base import BaseService
from escrow_kernel.services.booking_service import BookingLifecycleService, dedupe_key
from escrow_kernel.services.notification_service import NotificationOutboxService

logger = get_logger("services.dispute")

# Statuses in which the client may contest the delivered service.
DISPUTABLE_STATUSES = frozenset({
    BookingStatus.AWAITING_CLIENT_CONFIRMATION,
    BookingStatus.COMPLETED,
})


@dataclass(frozen=True)
class DisputeOpened:
    dispute_id: UUID
    booking_id: UUID
    notification_ids: tuple[UUID, ...] = ()


class SqlDisputeLookup:
    """DisputeLookup answered from the ``disputes`` table in the same session."""

    def __init__(self, session: Session):
        self.session = session

    def has_open_dispute(self, booking_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(
                    exists().where(
                        DisputeModel.booking_id == booking_id,
                        DisputeModel.status == DisputeStatus.OPEN,
                    )
                )
            ).scalar()
        )


class DisputeService(BaseService[DisputeModel]):
    """Open and resolve disputes. Flush-only."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: EscrowPolicy | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or EscrowPolicy()

    def _lifecycle(self) -> BookingLifecycleService:
        return BookingLifecycleService(
            self.session, clock=self._clock, policy=self._policy,
            dispute_lookup=SqlDisputeLookup(self.session),
        )

    def _open_dispute_for(self, booking_id: UUID) -> DisputeModel | None:
        return self.session.execute(
            select(DisputeModel)
            .where(
                DisputeModel.booking_id == booking_id,
                DisputeModel.status == DisputeStatus.OPEN,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def open_dispute(
        self,
        booking_id: UUID,
        client_id: str,
        reason: str,
        now: datetime | None = None,
    ) -> DisputeOpened:
        """
        Raise a dispute on a delivered, unreleased booking.

        Raises:
            BookingNotFoundError: booking does not exist.
            DisputeNotAllowedError: wrong client, wrong status, already
                released or already disputed.
        """
        now = now if now is not None else self._clock.now()
        lifecycle = self._lifecycle()
        booking = lifecycle.load_for_update(booking_id)

        if booking.client_id != client_id:
            raise DisputeNotAllowedError(str(booking_id), "booking belongs to another client")
        if booking.status not in DISPUTABLE_STATUSES:
            raise DisputeNotAllowedError(str(booking_id), f"booking is {booking.status.value}")
        if booking.escrow_released:
            raise DisputeNotAllowedError(str(booking_id), "escrow already released")
        if self._open_dispute_for(booking.id) is not None:
            raise DisputeNotAllowedError(str(booking_id), "a dispute is already open")

        dispute = DisputeModel(
            booking_id=booking.id,
            raised_by=client_id,
            reason=reason,
            status=DisputeStatus.OPEN,
            opened_at=now,
        )
        self.session.add(dispute)
        self.session.flush()

        self.session.add(
            BookingEventModel(
                booking_id=booking.id,
                event_type=BookingEventType.DISPUTE_OPENED,
                from_status=booking.status,
                to_status=booking.status,
                actor_id=client_id,
                occurred_at=now,
                details={"dispute_id": str(dispute.id), "reason": reason},
            )
        )
        self.session.flush()

        notification_id = NotificationOutboxService(self.session).enqueue(
            NotificationRequest(
                recipient=Recipient.provider(booking.provider_id),
                notification_type=NotificationType.DISPUTE_OPENED,
                dedupe_key=dedupe_key(
                    booking.id,
                    f"{BookingEventType.DISPUTE_OPENED.value}.{dispute.id}",
                    Recipient.provider(booking.provider_id),
                ),
                payload={"bookingId": str(booking.id), "reason": reason},
            ),
            now,
        )
        logger.info(
            "dispute_opened",
            extra={"booking_id": str(booking.id), "dispute_id": str(dispute.id)},
        )
        return DisputeOpened(
            dispute_id=dispute.id,
            booking_id=booking.id,
            notification_ids=(notification_id,) if notification_id else (),
        )

    def resolve_dispute(
        self,
        booking_id: UUID,
        resolution: DisputeResolution,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """
        Close the open dispute and force the booking outcome.

        COMPLETE on an already COMPLETED booking only closes the dispute,
        after which the escrow becomes releasable once its hold elapses.
        CANCEL on a COMPLETED booking is rejected.

        Raises:
            DisputeNotFoundError: no open dispute for the booking.
            InvalidStateTransitionError: resolution impossible from the
                booking's current status.
        """
        now = now if now is not None else self._clock.now()
        lifecycle = self._lifecycle()
        booking = lifecycle.load_for_update(booking_id)
        dispute = self._open_dispute_for(booking.id)
        if dispute is None:
            raise DisputeNotFoundError(str(booking_id))
        if booking.status == BookingStatus.COMPLETED and resolution is DisputeResolution.CANCEL:
            raise InvalidStateTransitionError(
                booking_id=str(booking_id),
                current_status=booking.status.value,
                attempted_status=BookingStatus.CANCELLED.value,
                expected_statuses=(
                    BookingStatus.IN_PROGRESS.value,
                    BookingStatus.AWAITING_CLIENT_CONFIRMATION.value,
                ),
                operation="resolve_dispute",
            )

        dispute.status = DisputeStatus.RESOLVED
        dispute.resolved_at = now
        dispute.resolution = resolution
        self.session.flush()

        result = lifecycle.apply_dispute_resolution(booking, resolution, dispute.id, actor_id, now)
        logger.info(
            "dispute_resolved",
            extra={
                "booking_id": str(booking.id),
                "dispute_id": str(dispute.id),
                "resolution": resolution.value,
            },
        )
        return result
