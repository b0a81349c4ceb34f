"""
Pure schedule evaluation functions.

Contract:
    ``should_fire(schedule, as_of)`` and ``compute_next_run()`` are PURE --
    no I/O, no side effects.  All timestamps come from the caller.

Architecture: escrow_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from escrow_batch.domain.types import JobSchedule, ScheduleFrequency

_FIXED_DELTAS = {
    ScheduleFrequency.HOURLY: timedelta(hours=1),
    ScheduleFrequency.DAILY: timedelta(days=1),
}


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """Determine if a schedule should fire at the given time.

    Rules:
        - Inactive schedules never fire.
        - ON_DEMAND never fires automatically.
        - ONCE fires if never run before.
        - Recurring schedules fire if ``next_run_at`` is unset or
          ``as_of >= next_run_at``.
    """
    if not schedule.is_active:
        return False

    if schedule.frequency == ScheduleFrequency.ON_DEMAND:
        return False

    if schedule.frequency == ScheduleFrequency.ONCE:
        return schedule.last_run_at is None

    if schedule.next_run_at is not None and as_of < schedule.next_run_at:
        return False

    return True


def compute_next_run(
    frequency: ScheduleFrequency,
    last_run_at: datetime | None,
    interval_seconds: int | None = None,
) -> datetime | None:
    """Compute the next run time for a schedule.

    Returns:
        Next run datetime, or None for ON_DEMAND/ONCE or a schedule that
        has never run.

    Raises:
        ValueError: INTERVAL without a positive ``interval_seconds``.
    """
    if frequency in (ScheduleFrequency.ON_DEMAND, ScheduleFrequency.ONCE):
        return None

    if last_run_at is None:
        return None

    if frequency == ScheduleFrequency.INTERVAL:
        if not interval_seconds or interval_seconds <= 0:
            raise ValueError(
                f"INTERVAL schedule needs a positive interval_seconds, got {interval_seconds}"
            )
        return last_run_at + timedelta(seconds=interval_seconds)

    return last_run_at + _FIXED_DELTAS[frequency]
