"""
EscrowBatchOrchestrator -- DI container for the recurring escrow jobs.

Contract:
    Wires the TaskRegistry with the escrow tasks, creates the SweepRunner
    and the notification dispatcher, and optionally a BatchScheduler.
    Single place where the batch dependencies are composed from
    ``EscrowSettings``.

Architecture: escrow_batch (top-level).  Nothing in escrow_kernel imports
    from escrow_batch.

Invariants enforced:
    - Clock injection: every component receives the same Clock.
    - Per-booking isolation: sweeps run through SweepRunner only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from escrow_config.schema import EscrowSettings
from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.dtos import ReleaseSummary, SweepSummary
from escrow_kernel.domain.interfaces import DisputeLookup, NotificationSender
from escrow_kernel.domain.values import Money, sum_money
from escrow_kernel.logging_config import get_logger
from escrow_kernel.services.notification_service import DispatchSummary, NotificationDispatcher

from escrow_batch.domain.types import BatchJobStatus, BatchRunResult, JobSchedule, ScheduleFrequency
from escrow_batch.services.runner import SweepRunner
from escrow_batch.services.scheduler import BatchScheduler
from escrow_batch.tasks.base import TaskRegistry
from escrow_batch.tasks.escrow_tasks import (
    AUTO_CONFIRM_TASK,
    RELEASE_TASK,
    AutoConfirmTask,
    EscrowReleaseTask,
)

logger = get_logger("batch.orchestrator")


def _default_task_registry(
    settings: EscrowSettings,
    clock: Clock,
    dispute_lookup: DisputeLookup | None = None,
) -> TaskRegistry:
    """Create a TaskRegistry pre-loaded with the escrow tasks."""
    policy = settings.to_policy()
    registry = TaskRegistry()
    for task_cls in (AutoConfirmTask, EscrowReleaseTask):
        registry.register(
            task_cls(
                policy,
                clock=clock,
                batch_limit=settings.sweep.batch_limit,
                dispute_lookup=dispute_lookup,
            )
        )
    return registry


class EscrowBatchOrchestrator:
    """DI container for the escrow sweeps.

    Contract:
        - ``run_auto_confirm_sweep()`` / ``run_escrow_release_sweep()`` run
          one sweep and return its summary.
        - ``retry_failed_notifications()`` redelivers FAILED outbox rows.
        - ``create_scheduler()`` returns a BatchScheduler for background use.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: EscrowSettings | None = None,
        clock: Clock | None = None,
        notification_sender: NotificationSender | None = None,
        task_registry: TaskRegistry | None = None,
        dispute_lookup: DisputeLookup | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or EscrowSettings()
        self._clock = clock or SystemClock()
        self._task_registry = (
            task_registry if task_registry is not None
            else _default_task_registry(self._settings, self._clock, dispute_lookup)
        )
        self._dispatcher = (
            NotificationDispatcher(
                session_factory,
                notification_sender,
                self._clock,
                self._settings.notifications.max_attempts,
            )
            if notification_sender is not None else None
        )
        self._runner = SweepRunner(
            session_factory,
            self._task_registry,
            clock=self._clock,
            dispatcher=self._dispatcher,
            item_timeout_seconds=self._settings.sweep.item_timeout_seconds,
        )

    # -------------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------------

    def run_auto_confirm_sweep(self, now: datetime | None = None) -> SweepSummary:
        """Auto-confirm every booking whose confirmation deadline has passed."""
        result = self._runner.run(AUTO_CONFIRM_TASK, now or self._clock.now())
        return SweepSummary(
            confirmed_count=result.succeeded,
            checked_count=result.total_items,
            failed_count=result.failed,
            success=result.status != BatchJobStatus.FAILED,
        )

    def run_escrow_release_sweep(self, now: datetime | None = None) -> ReleaseSummary:
        """Release every booking whose hold period has elapsed."""
        result = self._runner.run(RELEASE_TASK, now or self._clock.now())
        return ReleaseSummary(
            released_count=result.succeeded,
            checked_count=result.total_items,
            total_released=self._total_released(result),
            failed_count=result.failed,
            success=result.status != BatchJobStatus.FAILED,
        )

    def _total_released(self, result: BatchRunResult) -> Money:
        currency = self._settings.currency
        amounts = [
            Money.of(Decimal(item.result_data["provider_amount"]), item.result_data["currency"])
            for item in result.succeeded_items()
            if item.result_data
        ]
        return sum_money(amounts, currency)

    def retry_failed_notifications(self, now: datetime | None = None) -> DispatchSummary:
        if self._dispatcher is None:
            logger.warning("notification_retry_skipped", extra={"reason": "no sender configured"})
            return DispatchSummary()
        return self._dispatcher.retry_failed(now or self._clock.now(), self._settings.sweep.batch_limit)

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def default_schedules(self) -> tuple[JobSchedule, ...]:
        """Both sweeps every ``sweep.interval_seconds``."""
        interval = self._settings.sweep.interval_seconds
        return (
            JobSchedule(
                schedule_id=uuid4(),
                job_name="Escrow auto-confirm sweep",
                task_type=AUTO_CONFIRM_TASK,
                frequency=ScheduleFrequency.INTERVAL,
                interval_seconds=interval,
            ),
            JobSchedule(
                schedule_id=uuid4(),
                job_name="Escrow release sweep",
                task_type=RELEASE_TASK,
                frequency=ScheduleFrequency.INTERVAL,
                interval_seconds=interval,
            ),
        )

    def create_scheduler(
        self,
        tick_interval_seconds: int = 60,
        schedules: tuple[JobSchedule, ...] | None = None,
    ) -> BatchScheduler:
        """Create a BatchScheduler wired with the orchestrator's runner and clock."""
        return BatchScheduler(
            runner=self._runner,
            schedules=schedules if schedules is not None else self.default_schedules(),
            clock=self._clock,
            tick_interval_seconds=tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def settings(self) -> EscrowSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def runner(self) -> SweepRunner:
        return self._runner

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry
