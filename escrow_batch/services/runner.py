"""
SweepRunner -- transaction-per-item sweep execution.

Contract:
    Prepares the candidate items of a task in a short read transaction,
    then executes each item in its own session and transaction.  Only a
    SUCCEEDED item is committed; SKIPPED and FAILED items are rolled back.
    Notifications enqueued by an item are dispatched after its commit.

Architecture: escrow_batch/services.  Imports from escrow_batch.domain,
    escrow_batch.tasks and the kernel's db/logging/dispatcher.

Invariants enforced:
    - Isolation per item: one failing or poisoned booking never aborts
      the sweep; the exception is rolled back, logged and counted.
    - Bounded item transactions: on PostgreSQL every item transaction sets
      ``statement_timeout`` and ``lock_timeout``.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from escrow_kernel.db.engine import is_postgres, session_scope
from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.exceptions import EscrowKernelError, PersistenceConflictError
from escrow_kernel.logging_config import LogContext, get_logger
from escrow_kernel.services.notification_service import NotificationDispatcher
from escrow_kernel.services.orchestrator import is_conflict

from escrow_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)
from escrow_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry

logger = get_logger("batch.runner")


def _error_code(exc: Exception) -> str:
    if is_conflict(exc):
        return PersistenceConflictError.code
    if isinstance(exc, EscrowKernelError):
        return exc.code
    return "UNHANDLED_EXCEPTION"


class SweepRunner:
    """Runs registered sweep tasks with per-item transaction isolation.

    Non-goals:
        - Does NOT persist run history -- the returned BatchRunResult and
          the structured log are the record.
        - Does NOT schedule -- that is BatchScheduler's job.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        dispatcher: NotificationDispatcher | None = None,
        item_timeout_seconds: int = 5,
    ):
        self._session_factory = session_factory
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._dispatcher = dispatcher
        self._item_timeout_ms = int(item_timeout_seconds * 1000)

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    def run(
        self,
        task_type: str,
        as_of: datetime | None = None,
        parameters: dict[str, Any] | None = None,
    ) -> BatchRunResult:
        """Run one sweep of ``task_type`` as of ``as_of`` (default: clock now).

        Raises:
            KeyError: If no task is registered for ``task_type``.
        """
        task = self._task_registry.get(task_type)
        now = as_of or self._clock.now()
        parameters = dict(parameters or {})
        job_id = uuid4()
        correlation_id = str(uuid4())
        start_time = time.monotonic()

        with LogContext.bind(job_id=str(job_id), correlation_id=correlation_id):
            with session_scope(self._session_factory) as session:
                items = task.prepare_items(parameters, session, now)

            logger.info(
                "sweep_started",
                extra={"task_type": task_type, "as_of": now, "item_count": len(items)},
            )

            item_results = [self._run_item(task, item, parameters, now) for item in items]

        succeeded = sum(1 for r in item_results if r.status == BatchItemStatus.SUCCEEDED)
        failed = sum(1 for r in item_results if r.status == BatchItemStatus.FAILED)
        skipped = sum(1 for r in item_results if r.status == BatchItemStatus.SKIPPED)

        status = BatchJobStatus.from_counts(succeeded, failed, skipped)

        result = BatchRunResult(
            job_id=job_id,
            task_type=task_type,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(item_results),
            started_at=now,
            completed_at=self._clock.now(),
            duration_ms=int((time.monotonic() - start_time) * 1000),
            correlation_id=correlation_id,
        )
        logger.info(
            "sweep_completed",
            extra={
                "job_id": str(job_id),
                "task_type": task_type,
                "status": status.value,
                "total_items": result.total_items,
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": result.duration_ms,
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _apply_timeouts(self, session: Session) -> None:
        if is_postgres(session):
            # SET LOCAL takes no bind parameters; the value is an int.
            session.execute(text(f"SET LOCAL statement_timeout = {self._item_timeout_ms}"))
            session.execute(text(f"SET LOCAL lock_timeout = {self._item_timeout_ms}"))

    def _run_item(
        self,
        task: BatchTask,
        item: BatchItemInput,
        parameters: dict[str, Any],
        now: datetime,
    ) -> BatchItemResult:
        item_start = time.monotonic()
        item_started_at = self._clock.now()
        result: BatchTaskResult | None = None

        with LogContext.bind(booking_id=item.item_key):
            session = self._session_factory()
            try:
                self._apply_timeouts(session)
                result = task.execute_item(item, parameters, session, now)
                if result.status == BatchItemStatus.SUCCEEDED:
                    session.commit()
                else:
                    session.rollback()
            except Exception as exc:
                session.rollback()
                error_code = _error_code(exc)
                logger.warning(
                    "sweep_item_failed",
                    extra={
                        "task_type": task.task_type,
                        "item_key": item.item_key,
                        "error_code": error_code,
                        "error": str(exc),
                    },
                    exc_info=True,
                )
                return BatchItemResult(
                    item_index=item.item_index,
                    item_key=item.item_key,
                    status=BatchItemStatus.FAILED,
                    error_code=error_code,
                    error_message=str(exc),
                    duration_ms=int((time.monotonic() - item_start) * 1000),
                    started_at=item_started_at,
                    completed_at=self._clock.now(),
                )
            finally:
                session.close()

            if result.status == BatchItemStatus.FAILED:
                logger.warning(
                    "sweep_item_failed",
                    extra={
                        "task_type": task.task_type,
                        "item_key": item.item_key,
                        "error_code": result.error_code,
                        "error": result.error_message,
                    },
                )
            elif result.status == BatchItemStatus.SUCCEEDED:
                self._dispatch(result)

        return BatchItemResult(
            item_index=item.item_index,
            item_key=item.item_key,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=int((time.monotonic() - item_start) * 1000),
            started_at=item_started_at,
            completed_at=self._clock.now(),
        )

    def _dispatch(self, result: BatchTaskResult) -> None:
        if not result.notification_ids or self._dispatcher is None:
            return
        try:
            self._dispatcher.dispatch(result.notification_ids)
        except Exception:
            # rows stay PENDING and are picked up by retry_failed
            logger.exception(
                "notification_dispatch_error",
                extra={"notification_count": len(result.notification_ids)},
            )
