"""
Configuration Loader (``escrow_config.loader``).

Responsibility
--------------
Loads a YAML settings file, validates it, and parses it into a frozen
``EscrowSettings``.  The single public entry point for runtime config is
``escrow_config.get_active_config()``; this module is its tooling.

Invariants enforced
-------------------
* Every validation problem is collected and reported at once in a
  ``ConfigValidationError``; no silent defaults for malformed values.
* Rates are parsed to ``Decimal`` from their string form; floats in YAML
  are read via ``str()`` so ``0.05`` stays exactly ``0.05``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  canonical settings for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from escrow_config.schema import (
    ConfigValidationError,
    ConflictRetrySettings,
    EscrowSettings,
    NotificationSettings,
    SweepSettings,
)
from escrow_kernel.domain.currency import CurrencyRegistry


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive_int(data: dict[str, Any], key: str, default: int, errors: list[str], prefix: str = "") -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        errors.append(f"{prefix}{key} must be a positive integer, got {value!r}")
        return default
    return value


def _section(data: dict[str, Any], key: str, errors: list[str]) -> dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        errors.append(f"{key} must be a mapping, got {type(section).__name__}")
        return {}
    return section


def parse_settings(data: dict[str, Any]) -> EscrowSettings:
    """
    Parse and validate a settings dict.

    Raises:
        ConfigValidationError: listing every invalid field.
    """
    errors: list[str] = []
    defaults = EscrowSettings()

    currency = str(data.get("currency", defaults.currency)).upper()
    if not CurrencyRegistry.is_valid(currency):
        errors.append(f"currency {currency!r} is not a known ISO 4217 code")

    raw_rate = data.get("commission_rate", defaults.commission_rate)
    try:
        commission_rate = Decimal(str(raw_rate))
    except (InvalidOperation, ValueError):
        errors.append(f"commission_rate {raw_rate!r} is not a number")
        commission_rate = defaults.commission_rate
    else:
        if not (Decimal("0") <= commission_rate < Decimal("1")):
            errors.append(f"commission_rate must be in [0, 1), got {commission_rate}")

    hold_period_hours = _positive_int(data, "hold_period_hours", defaults.hold_period_hours, errors)

    sweep_data = _section(data, "sweep", errors)
    sweep = SweepSettings(
        interval_seconds=_positive_int(sweep_data, "interval_seconds", 3600, errors, "sweep."),
        batch_limit=_positive_int(sweep_data, "batch_limit", 100, errors, "sweep."),
        item_timeout_seconds=_positive_int(sweep_data, "item_timeout_seconds", 5, errors, "sweep."),
    )

    retry_data = _section(data, "conflict_retry", errors)
    conflict_retry = ConflictRetrySettings(
        max_attempts=_positive_int(retry_data, "max_attempts", 3, errors, "conflict_retry."),
    )

    notif_data = _section(data, "notifications", errors)
    notifications = NotificationSettings(
        max_attempts=_positive_int(notif_data, "max_attempts", 5, errors, "notifications."),
    )

    if errors:
        raise ConfigValidationError(errors)

    settings = EscrowSettings(
        config_id=str(data.get("config_id", defaults.config_id)),
        version=int(data.get("version", defaults.version)),
        currency=currency,
        commission_rate=commission_rate,
        hold_period_hours=hold_period_hours,
        sweep=sweep,
        conflict_retry=conflict_retry,
        notifications=notifications,
    )
    return replace(settings, checksum=compute_checksum(settings))


def compute_checksum(settings: EscrowSettings) -> str:
    """SHA-256 of the canonical JSON form of ``settings``."""
    canonical = json.dumps(settings.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def load_settings(path: Path) -> EscrowSettings:
    """Load, validate and parse one settings file."""
    return parse_settings(load_yaml_file(path))
