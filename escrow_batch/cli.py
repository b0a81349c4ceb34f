"""
escrow-batch -- run the recurring escrow jobs once from the command line.

Usage:
  escrow-batch sweep               [--database-url URL] [--config PATH] [--now ISO8601]
  escrow-batch release             [--database-url URL] [--config PATH] [--now ISO8601]
  escrow-batch retry-notifications [--database-url URL] [--config PATH] [--now ISO8601]
  escrow-batch init-db             [--database-url URL]

Prints the JSON summary on stdout and exits 0 on success, 1 otherwise.
The database URL defaults to $DATABASE_URL.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import UTC, datetime

from escrow_config import get_active_config
from escrow_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from escrow_kernel.db.immutability import register_immutability_listeners
from escrow_kernel.domain.clock import DeterministicClock, SystemClock
from escrow_kernel.logging_config import configure_logging, get_logger
from escrow_kernel.services.notification_service import LoggingNotificationSender

from escrow_batch.orchestrator import EscrowBatchOrchestrator

logger = get_logger("batch.cli")


def _parse_now(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO 8601 timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="escrow-batch",
        description="Run escrow auto-confirmation, escrow release and notification retry jobs",
    )
    p.add_argument(
        "command",
        choices=("sweep", "release", "retry-notifications", "init-db"),
        help="Job to run",
    )
    p.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database URL (default: $DATABASE_URL)",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Settings YAML (default: the shipped escrow_config/sets/default.yaml)",
    )
    p.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="Evaluate as of this ISO 8601 timestamp instead of the current time",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        help="Log level for the JSON log written to stderr (default: INFO)",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level.upper(), stream=sys.stderr)

    if not args.database_url:
        print("error: --database-url or DATABASE_URL is required", file=sys.stderr)
        return 1

    init_engine_from_url(args.database_url)
    register_immutability_listeners()

    if args.command == "init-db":
        create_tables()
        print(json.dumps({"success": True}))
        return 0

    settings = get_active_config(args.config)
    clock = DeterministicClock(args.now) if args.now is not None else SystemClock()
    orchestrator = EscrowBatchOrchestrator(
        get_session_factory(),
        settings=settings,
        clock=clock,
        notification_sender=LoggingNotificationSender(),
    )

    if args.command == "sweep":
        summary = orchestrator.run_auto_confirm_sweep().to_dict()
    elif args.command == "release":
        summary = orchestrator.run_escrow_release_sweep().to_dict()
    else:
        summary = orchestrator.retry_failed_notifications().to_dict()

    print(json.dumps(summary))
    return 0 if summary["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
