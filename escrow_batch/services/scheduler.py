"""
BatchScheduler -- in-process polling loop that keeps the sweeps running.

Each tick reads the clock once, asks ``should_fire()`` about every
schedule and runs the due ones through SweepRunner.  Schedules live in
memory only; after a restart every INTERVAL schedule is due immediately,
which is harmless because the sweeps are idempotent.

Two schedulers against one database are also safe: every booking
transition is re-checked under its row lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.logging_config import get_logger

from escrow_batch.domain.schedule import compute_next_run, should_fire
from escrow_batch.domain.types import JobSchedule
from escrow_batch.services.runner import SweepRunner

logger = get_logger("batch.scheduler")


class BatchScheduler:

    def __init__(
        self,
        runner: SweepRunner,
        schedules: Iterable[JobSchedule] = (),
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._runner = runner
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._schedules: dict[UUID, JobSchedule] = {s.schedule_id: s for s in schedules}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def schedules(self) -> tuple[JobSchedule, ...]:
        with self._lock:
            return tuple(self._schedules.values())

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_schedule(self, schedule: JobSchedule) -> None:
        with self._lock:
            self._schedules[schedule.schedule_id] = schedule

    def tick(self) -> int:
        """Fire every due schedule once; returns how many ran. Public for tests."""
        now = self._clock.now()
        fired = 0
        for schedule in self.schedules:
            if self._stop_event.is_set():
                break
            if should_fire(schedule, now) and self._fire(schedule, now):
                fired += 1
        return fired

    def start(self) -> None:
        """Run ``tick()`` every ``tick_interval_seconds`` on a daemon thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="escrow-batch-scheduler", daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal the loop and wait for the sweep in progress to finish."""
        self._stop_event.set()
        if self.is_running:
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def _fire(self, schedule: JobSchedule, now: datetime) -> bool:
        try:
            result = self._runner.run(schedule.task_type, now, schedule.parameters)
        except Exception:
            # the schedule stays due and is retried on the next tick
            logger.exception(
                "schedule_fire_failed",
                extra={"schedule_id": str(schedule.schedule_id), "job_name": schedule.job_name},
            )
            return False

        next_run = compute_next_run(schedule.frequency, now, schedule.interval_seconds)
        with self._lock:
            self._schedules[schedule.schedule_id] = replace(
                schedule, last_run_at=now, last_run_status=result.status, next_run_at=next_run,
            )
        logger.info(
            "schedule_fired",
            extra={
                "job_name": schedule.job_name,
                "job_id": str(result.job_id),
                "status": result.status.value,
                "next_run_at": next_run,
            },
        )
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
