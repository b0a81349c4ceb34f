"""escrow_batch.services -- sweep runner and in-process scheduler."""

from escrow_batch.services.runner import SweepRunner
from escrow_batch.services.scheduler import BatchScheduler

__all__ = ["BatchScheduler", "SweepRunner"]
