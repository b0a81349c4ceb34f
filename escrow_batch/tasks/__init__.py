"""
escrow_batch.tasks -- Task protocol, registry, and the escrow sweep tasks.
"""

from escrow_batch.tasks.base import (
    BatchItemInput,
    BatchTask,
    BatchTaskResult,
    TaskRegistry,
)
from escrow_batch.tasks.escrow_tasks import (
    AUTO_CONFIRM_TASK,
    RELEASE_TASK,
    AutoConfirmTask,
    EscrowReleaseTask,
)

__all__ = [
    "AUTO_CONFIRM_TASK",
    "RELEASE_TASK",
    "AutoConfirmTask",
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "EscrowReleaseTask",
    "TaskRegistry",
]
