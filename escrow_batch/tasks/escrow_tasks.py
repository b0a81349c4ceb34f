"""
Sweep tasks: deadline auto-confirmation and escrow release.

Both tasks pre-select candidate booking ids with BookingSelector and hand
each one to BookingLifecycleService, which re-checks eligibility under
the row lock.  A booking that stopped being eligible between selection
and execution is SKIPPED, not FAILED.

Candidates are read in pages of ``batch_limit`` ids; a run keeps paging
until a short page, so nothing eligible waits for the next run.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from escrow_kernel.domain.clock import Clock
from escrow_kernel.domain.dtos import EscrowPolicy
from escrow_kernel.domain.interfaces import DisputeLookup
from escrow_kernel.exceptions import EscrowKernelError, EscrowNotReleasableError
from escrow_kernel.selectors.booking_selector import BookingSelector
from escrow_kernel.services.booking_service import BookingLifecycleService

from escrow_batch.domain.types import BatchItemStatus
from escrow_batch.tasks.base import BatchItemInput, BatchTaskResult, booking_items

AUTO_CONFIRM_TASK = "escrow.auto_confirm"
RELEASE_TASK = "escrow.release"


class _EscrowTask:
    """Shared wiring for tasks that drive BookingLifecycleService."""

    def __init__(
        self,
        policy: EscrowPolicy,
        clock: Clock | None = None,
        batch_limit: int = 100,
        dispute_lookup: DisputeLookup | None = None,
    ):
        self._policy = policy
        self._clock = clock
        self._batch_limit = batch_limit
        self._dispute_lookup = dispute_lookup

    def _limit(self, parameters: dict[str, Any]) -> int:
        return int(parameters.get("batch_limit", self._batch_limit))

    def _all_pages(self, parameters: dict[str, Any], fetch: Callable[[int, int], list[UUID]]) -> list[UUID]:
        """Read candidates page by page (``batch_limit`` per page) until a short page."""
        page_size = self._limit(parameters)
        ids: list[UUID] = []
        while True:
            page = fetch(page_size, len(ids))
            ids.extend(page)
            if len(page) < page_size:
                return ids

    def _lifecycle(self, session: Session) -> BookingLifecycleService:
        return BookingLifecycleService(
            session, clock=self._clock, policy=self._policy, dispute_lookup=self._dispute_lookup,
        )


class AutoConfirmTask(_EscrowTask):
    """Complete bookings whose client confirmation deadline has passed."""

    @property
    def task_type(self) -> str:
        return AUTO_CONFIRM_TASK

    @property
    def description(self) -> str:
        return "Auto-confirm bookings past their client confirmation deadline"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        selector = BookingSelector(session)
        ids = self._all_pages(
            parameters,
            lambda limit, offset: selector.auto_confirm_candidate_ids(as_of, limit, offset),
        )
        return booking_items(ids)

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        booking_id = UUID(item.payload["booking_id"])
        try:
            result = self._lifecycle(session).auto_confirm(booking_id, as_of)
        except EscrowKernelError as exc:
            return BatchTaskResult.failed(exc)
        if result is None:
            return BatchTaskResult(status=BatchItemStatus.SKIPPED)
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "booking_id": str(booking_id),
                "status": result.booking.status.value,
            },
            notification_ids=result.notification_ids,
        )


class EscrowReleaseTask(_EscrowTask):
    """Release provider funds whose hold period has elapsed."""

    @property
    def task_type(self) -> str:
        return RELEASE_TASK

    @property
    def description(self) -> str:
        return "Release escrow for completed bookings past the hold period"

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        selector = BookingSelector(session)
        ids = self._all_pages(
            parameters,
            lambda limit, offset: selector.release_candidate_ids(as_of, self._policy.hold_period, limit, offset),
        )
        return booking_items(ids)

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        booking_id = UUID(item.payload["booking_id"])
        try:
            result = self._lifecycle(session).release_escrow(booking_id, as_of)
        except EscrowNotReleasableError as exc:
            return BatchTaskResult(
                status=BatchItemStatus.SKIPPED,
                error_code=exc.code,
                error_message=exc.reason,
            )
        except EscrowKernelError as exc:
            return BatchTaskResult.failed(exc)
        provider_amount = result.booking.provider_amount
        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "booking_id": str(booking_id),
                "provider_amount": str(provider_amount.amount),
                "currency": provider_amount.currency.code,
            },
            notification_ids=result.notification_ids,
        )
