"""
Module: escrow_kernel.selectors.earnings_selector
Responsibility: Provider earnings read path.  Loads a provider's bookings
    and hands them to the pure aggregator in domain/earnings.py, and
    lists the provider's transactions from the booking ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - No independent state: every figure is re-derived from booking rows on
      each call, so there is nothing to invalidate.
    - Read-committed reads are sufficient; the snapshot is advisory data.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from escrow_kernel.domain.dtos import EscrowPolicy
from escrow_kernel.domain.earnings import (
    TRANSACTION_EVENT_TYPES,
    MonthlyEarnings,
    ProviderEarningsSnapshot,
    ProviderTransaction,
    compute_earnings_snapshot,
    compute_monthly_earnings,
    provider_transaction,
)
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.booking import BookingModel
from escrow_kernel.models.booking_event import BookingEventModel
from escrow_kernel.selectors.base import BaseSelector
from escrow_kernel.selectors.booking_selector import BookingSelector

logger = get_logger("selectors.earnings")


class EarningsSelector(BaseSelector[BookingModel]):
    """Earnings snapshot and monthly breakdown for one provider."""

    def __init__(self, session: Session, policy: EscrowPolicy | None = None):
        super().__init__(session)
        self._policy = policy or EscrowPolicy()
        self._bookings = BookingSelector(session)

    def provider_snapshot(self, provider_id: str, now: datetime) -> ProviderEarningsSnapshot:
        bookings = self._bookings.list_for_provider(provider_id)
        snapshot = compute_earnings_snapshot(
            provider_id,
            bookings,
            now,
            self._policy.hold_period,
            self._policy.currency,
        )
        logger.debug(
            "earnings_snapshot_computed",
            extra={
                "provider_id": provider_id,
                "bookings_scanned": len(bookings),
                "total_earning_power": str(snapshot.total_earning_power.amount),
            },
        )
        return snapshot

    def monthly_earnings(
        self,
        provider_id: str,
        now: datetime,
        months: int = 12,
    ) -> tuple[MonthlyEarnings, ...]:
        bookings = self._bookings.list_for_provider(
            provider_id, statuses=frozenset({BookingStatus.COMPLETED}),
        )
        return compute_monthly_earnings(bookings, now, self._policy.currency, months)

    def provider_transactions(self, provider_id: str, limit: int = 50) -> list[ProviderTransaction]:
        """
        The provider's most recent money movements, newest first.

        Read from the booking ledger: captured payments, escrow releases and
        refunds of paid bookings that were cancelled.
        """
        rows = self.session.execute(
            select(BookingEventModel, BookingModel)
            .join(BookingModel, BookingModel.id == BookingEventModel.booking_id)
            .where(
                BookingModel.provider_id == provider_id,
                BookingEventModel.event_type.in_(TRANSACTION_EVENT_TYPES),
                BookingEventModel.amount_minor.is_not(None),
            )
            .order_by(BookingEventModel.occurred_at.desc(), BookingEventModel.id.desc())
            .limit(limit)
        ).all()

        transactions = []
        for event, booking in rows:
            transaction = provider_transaction(
                event.id,
                event.event_type,
                Money.from_minor_units(event.amount_minor, event.currency),
                event.occurred_at,
                booking.to_info(),
            )
            if transaction is not None:
                transactions.append(transaction)
        return transactions
