"""
Sweep task protocol, item/result DTOs and the task registry.

A sweep task splits one run into per-booking items: ``prepare_items``
selects candidates in a read session, then the runner calls
``execute_item`` once per candidate, each in its own transaction.  Tasks
never commit or retry; whatever a run leaves behind is picked up by the
next scheduled run.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from escrow_kernel.exceptions import EscrowKernelError

from escrow_batch.domain.types import BatchItemStatus


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of sweep work; ``item_key`` is the booking id for escrow sweeps."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


def booking_items(booking_ids: Iterable[UUID]) -> tuple[BatchItemInput, ...]:
    """Wrap candidate booking ids as sweep items, preserving selection order."""
    return tuple(
        BatchItemInput(item_index=i, item_key=str(booking_id), payload={"booking_id": str(booking_id)})
        for i, booking_id in enumerate(booking_ids)
    )


@dataclass(frozen=True)
class BatchTaskResult:
    """
    Outcome of one item.

    The runner commits the item's transaction only for SUCCEEDED and then
    dispatches ``notification_ids``; anything else is rolled back.
    """

    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None
    notification_ids: tuple[UUID, ...] = ()

    @classmethod
    def failed(cls, exc: EscrowKernelError) -> BatchTaskResult:
        return cls(status=BatchItemStatus.FAILED, error_code=exc.code, error_message=str(exc))


@runtime_checkable
class BatchTask(Protocol):
    """Interface of a sweep task registered under ``task_type``."""

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        """Select this run's candidates as of ``as_of`` (read-only)."""
        ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        """Process one candidate; must re-check eligibility under the row lock."""
        ...


class TaskRegistry:
    """Sweep tasks keyed by ``task_type``; one task per key."""

    def __init__(self, tasks: Iterable[BatchTask] = ()) -> None:
        self._tasks: dict[str, BatchTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        if task_type not in self._tasks:
            raise KeyError(
                f"No task registered for type '{task_type}'. "
                f"Available: {list(self.list_tasks())}"
            )
        return self._tasks[task_type]

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __iter__(self) -> Iterator[BatchTask]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks
