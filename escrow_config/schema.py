"""
EscrowSettings schema.

The human-authored YAML settings file is parsed into these frozen types by
the loader.  Components receive them by constructor injection; nothing in
the kernel reads files or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from escrow_kernel.domain.dtos import EscrowPolicy


class ConfigValidationError(ValueError):
    """Settings failed validation. ``errors`` lists every problem found."""

    code: str = "CONFIG_VALIDATION_FAILED"

    def __init__(self, errors: list[str]):
        self.errors = tuple(errors)
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass(frozen=True)
class SweepSettings:
    """Recurring sweep job parameters."""

    interval_seconds: int = 3600
    batch_limit: int = 100
    item_timeout_seconds: int = 5


@dataclass(frozen=True)
class ConflictRetrySettings:
    max_attempts: int = 3


@dataclass(frozen=True)
class NotificationSettings:
    max_attempts: int = 5


@dataclass(frozen=True)
class EscrowSettings:
    """Validated runtime settings for the escrow kernel and batch jobs."""

    config_id: str = "default"
    version: int = 1
    currency: str = "GHS"
    commission_rate: Decimal = Decimal("0.05")
    hold_period_hours: int = 48
    sweep: SweepSettings = field(default_factory=SweepSettings)
    conflict_retry: ConflictRetrySettings = field(default_factory=ConflictRetrySettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    checksum: str = ""

    @property
    def hold_period(self) -> timedelta:
        return timedelta(hours=self.hold_period_hours)

    def to_policy(self) -> EscrowPolicy:
        """Translate into the kernel-side policy passed to services."""
        return EscrowPolicy(
            currency=self.currency,
            commission_rate=self.commission_rate,
            hold_period=self.hold_period,
        )

    def to_dict(self) -> dict:
        """Canonical plain-data form; the checksum is computed over it."""
        return {
            "config_id": self.config_id,
            "version": self.version,
            "currency": self.currency,
            "commission_rate": str(self.commission_rate),
            "hold_period_hours": self.hold_period_hours,
            "sweep": {
                "interval_seconds": self.sweep.interval_seconds,
                "batch_limit": self.sweep.batch_limit,
                "item_timeout_seconds": self.sweep.item_timeout_seconds,
            },
            "conflict_retry": {"max_attempts": self.conflict_retry.max_attempts},
            "notifications": {"max_attempts": self.notifications.max_attempts},
        }
