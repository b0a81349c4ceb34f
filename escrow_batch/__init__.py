"""
escrow_batch -- Recurring escrow jobs and their scheduling infrastructure.

Provides the auto-confirmation and escrow-release sweeps, a runner that
executes each booking in its own bounded transaction, an in-process
polling scheduler and the ``escrow-batch`` command line.

Architecture:
    escrow_batch/ is a top-level package.  Nothing in escrow_kernel/
    imports from escrow_batch.
"""
