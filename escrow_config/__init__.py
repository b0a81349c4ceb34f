"""
escrow_config -- single public entrypoint for escrow settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables; the kernel receives an
    ``EscrowSettings`` by constructor injection.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: invalid settings never reach a service.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ConfigValidationError`` -- one or more invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``escrow_config_loaded`` log record carrying config_id, version and
    checksum, tying sweep runs to the settings that governed them.
"""

from __future__ import annotations

from pathlib import Path

from escrow_config.loader import load_settings
from escrow_config.schema import ConfigValidationError, EscrowSettings
from escrow_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> EscrowSettings:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_path: Settings YAML to load.  Defaults to the shipped
            ``escrow_config/sets/default.yaml``.

    Returns:
        Frozen, validated ``EscrowSettings``.

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ConfigValidationError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    settings = load_settings(path)

    _logger.info(
        "escrow_config_loaded",
        extra={
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": settings.checksum,
            "currency": settings.currency,
            "commission_rate": str(settings.commission_rate),
            "hold_period_hours": settings.hold_period_hours,
        },
    )
    return settings


__all__ = [
    "get_active_config",
    "EscrowSettings",
    "ConfigValidationError",
]
