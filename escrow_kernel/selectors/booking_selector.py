"""
Module: escrow_kernel.selectors.booking_selector
Responsibility: Read-only query access to bookings, their ledger events and
    the candidate sets the recurring sweeps work through.
Architecture position: Kernel > Selectors.  May import from models/ and the
    pure domain.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - DTO convention: public methods return BookingInfo / BookingEventDTO,
      never ORM rows.
    - Candidate queries only pre-filter; the services re-check every
      condition under the row lock before writing.

Failure modes:
    - Returns None or an empty list when nothing matches (never raises on
      absence of data).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import exists, select

from escrow_kernel.domain.dtos import BookingEventType, BookingInfo
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money
from escrow_kernel.models.booking import BookingModel
from escrow_kernel.models.booking_event import BookingEventModel
from escrow_kernel.models.dispute import DisputeModel, DisputeStatus
from escrow_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BookingEventDTO:
    """One row of the append-only booking ledger."""

    id: UUID
    booking_id: UUID
    event_type: BookingEventType
    from_status: BookingStatus | None
    to_status: BookingStatus
    amount: Money | None
    actor_id: str | None
    occurred_at: datetime
    details: dict[str, Any] | None


def _no_open_dispute():
    return ~exists().where(
        DisputeModel.booking_id == BookingModel.id,
        DisputeModel.status == DisputeStatus.OPEN,
    )


class BookingSelector(BaseSelector[BookingModel]):
    """
    Selector for booking queries.

    Non-goals:
        - Does NOT lock rows; writers load through the lifecycle service.
    """

    def get(self, booking_id: UUID) -> BookingInfo | None:
        booking = self.session.get(BookingModel, booking_id)
        return booking.to_info() if booking is not None else None

    def list_for_provider(
        self,
        provider_id: str,
        statuses: frozenset[BookingStatus] | None = None,
    ) -> list[BookingInfo]:
        """Every booking of a provider, oldest first."""
        stmt = select(BookingModel).where(BookingModel.provider_id == provider_id)
        if statuses:
            stmt = stmt.where(BookingModel.status.in_(statuses))
        stmt = stmt.order_by(BookingModel.created_at, BookingModel.id)
        return [b.to_info() for b in self.session.execute(stmt).scalars()]

    def list_for_client(self, client_id: str) -> list[BookingInfo]:
        stmt = (
            select(BookingModel)
            .where(BookingModel.client_id == client_id)
            .order_by(BookingModel.created_at, BookingModel.id)
        )
        return [b.to_info() for b in self.session.execute(stmt).scalars()]

    def events_for(self, booking_id: UUID) -> list[BookingEventDTO]:
        """Ledger events of a booking in the order they happened."""
        rows = self.session.execute(
            select(BookingEventModel)
            .where(BookingEventModel.booking_id == booking_id)
            .order_by(BookingEventModel.occurred_at, BookingEventModel.id)
        ).scalars()
        return [
            BookingEventDTO(
                id=row.id,
                booking_id=row.booking_id,
                event_type=row.event_type,
                from_status=row.from_status,
                to_status=row.to_status,
                amount=(
                    Money.from_minor_units(row.amount_minor, row.currency)
                    if row.amount_minor is not None else None
                ),
                actor_id=row.actor_id,
                occurred_at=row.occurred_at,
                details=row.details,
            )
            for row in rows
        ]

    def auto_confirm_candidate_ids(self, now: datetime, limit: int = 100, offset: int = 0) -> list[UUID]:
        """
        Bookings awaiting confirmation whose deadline has passed and that
        have no open dispute, earliest deadline first.  One page of at most
        ``limit`` ids starting at ``offset``.
        """
        stmt = (
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.AWAITING_CLIENT_CONFIRMATION,
                BookingModel.client_confirm_deadline.is_not(None),
                BookingModel.client_confirm_deadline <= now,
                _no_open_dispute(),
            )
            .order_by(BookingModel.client_confirm_deadline, BookingModel.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.execute(stmt).scalars())

    def release_candidate_ids(
        self,
        now: datetime,
        hold_period: timedelta,
        limit: int = 100,
        offset: int = 0,
    ) -> list[UUID]:
        """Completed, paid, unreleased bookings whose hold period has elapsed."""
        stmt = (
            select(BookingModel.id)
            .where(
                BookingModel.status == BookingStatus.COMPLETED,
                BookingModel.is_paid.is_(True),
                BookingModel.escrow_released.is_(False),
                BookingModel.provider_amount_minor.is_not(None),
                BookingModel.completed_at.is_not(None),
                BookingModel.completed_at <= now - hold_period,
                _no_open_dispute(),
            )
            .order_by(BookingModel.completed_at, BookingModel.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.execute(stmt).scalars())

    def count_by_status(self, provider_id: str | None = None) -> dict[BookingStatus, int]:
        stmt = select(BookingModel.status)
        if provider_id is not None:
            stmt = stmt.where(BookingModel.provider_id == provider_id)
        counts: dict[BookingStatus, int] = {}
        for status in self.session.execute(stmt).scalars():
            counts[status] = counts.get(status, 0) + 1
        return counts
