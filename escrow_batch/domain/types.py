"""
Frozen DTOs and status enums of the sweep jobs.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class BatchItemStatus(str, Enum):
    """Outcome of one booking within a sweep run."""

    SUCCEEDED = "succeeded"  # transition committed
    FAILED = "failed"  # rolled back; the sweep moved on
    SKIPPED = "skipped"  # no longer eligible under the row lock


class BatchJobStatus(str, Enum):
    """Outcome of a whole sweep run."""

    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"

    @classmethod
    def from_counts(cls, succeeded: int, failed: int, skipped: int) -> BatchJobStatus:
        """COMPLETED when nothing failed, FAILED when nothing else happened."""
        if failed == 0:
            return cls.COMPLETED
        if succeeded == 0 and skipped == 0:
            return cls.FAILED
        return cls.PARTIALLY_COMPLETED


class ScheduleFrequency(str, Enum):
    ONCE = "once"
    INTERVAL = "interval"  # every ``interval_seconds``
    HOURLY = "hourly"
    DAILY = "daily"
    ON_DEMAND = "on_demand"  # CLI or explicit call only


@dataclass(frozen=True)
class BatchItemResult:
    """What happened to one booking; ``item_key`` is its id."""

    item_index: int
    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BatchRunResult:
    """
    Result of one sweep run, returned by ``SweepRunner.run()``.

    Not persisted: together with the ``sweep_completed`` log record this
    is the run's only record.
    """

    job_id: UUID
    task_type: str
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None

    def succeeded_items(self) -> tuple[BatchItemResult, ...]:
        return tuple(r for r in self.item_results if r.status is BatchItemStatus.SUCCEEDED)


@dataclass(frozen=True)
class JobSchedule:
    """
    In-memory recurring schedule for one sweep task.

    The scheduler replaces the whole value after each fire; ``should_fire``
    only reads it.
    """

    schedule_id: UUID
    job_name: str
    task_type: str
    frequency: ScheduleFrequency
    interval_seconds: int | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: BatchJobStatus | None = None
    is_active: bool = True
