"""
escrow_batch.domain -- Pure types and schedule evaluation for the sweeps.

ZERO I/O.  All types are frozen dataclasses.
"""

from escrow_batch.domain.schedule import compute_next_run, should_fire
from escrow_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
    JobSchedule,
    ScheduleFrequency,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJobStatus",
    "BatchRunResult",
    "JobSchedule",
    "ScheduleFrequency",
    "compute_next_run",
    "should_fire",
]
