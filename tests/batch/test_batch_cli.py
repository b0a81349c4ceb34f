"""
escrow-batch command line: one-shot sweeps against a database URL.

These tests own the global engine (the CLI initializes it) and therefore
use their own SQLite file instead of the shared ``engine`` fixture.
"""

import json
from datetime import UTC, datetime

import pytest

from escrow_batch.cli import build_parser, main
from escrow_kernel.db.engine import get_session_factory, reset_engine
from escrow_kernel.domain.clock import DeterministicClock
from escrow_kernel.services.orchestrator import BookingOrchestrator
from tests.conftest import CLIENT_ID, DEFAULT_NOW, PROVIDER_ID, FakePaymentGateway


@pytest.fixture
def cli_db_url(tmp_path):
    yield f"sqlite:///{tmp_path / 'cli.db'}"
    reset_engine()


def run_cli(capsys, *argv) -> tuple[int, dict]:
    code = main(list(argv))
    out = capsys.readouterr().out.strip().splitlines()
    return code, json.loads(out[-1])


def seed_awaiting_booking(total: str = "100.00"):
    orchestrator = BookingOrchestrator(
        get_session_factory(),
        clock=DeterministicClock(DEFAULT_NOW),
        payment_gateway=FakePaymentGateway(),
    )
    booking = orchestrator.create_booking(CLIENT_ID, PROVIDER_ID, "service-1", total)
    orchestrator.accept_booking(booking.id)
    orchestrator.capture_payment_for_booking(booking.id, "mobile_money")
    return orchestrator.mark_service_completed(booking.id)


class TestCli:

    def test_init_db(self, capsys, cli_db_url):
        code, output = run_cli(capsys, "init-db", "--database-url", cli_db_url)
        assert code == 0
        assert output == {"success": True}

    def test_sweep_then_release(self, capsys, cli_db_url):
        run_cli(capsys, "init-db", "--database-url", cli_db_url)
        seed_awaiting_booking()

        code, early = run_cli(
            capsys, "sweep", "--database-url", cli_db_url, "--now", "2024-03-08T11:00:00",
        )
        assert code == 0
        assert early["confirmedCount"] == 0

        code, swept = run_cli(
            capsys, "sweep", "--database-url", cli_db_url, "--now", "2024-03-08T13:00:00+00:00",
        )
        assert code == 0
        assert swept == {"success": True, "confirmedCount": 1, "checkedCount": 1, "failedCount": 0}

        code, released = run_cli(
            capsys, "release", "--database-url", cli_db_url, "--now", "2024-03-08T13:00:00Z",
        )
        assert code == 0
        assert released["releasedCount"] == 1
        assert released["totalReleased"] == "95.00"
        assert released["currency"] == "GHS"

    def test_retry_notifications(self, capsys, cli_db_url):
        run_cli(capsys, "init-db", "--database-url", cli_db_url)
        # seeded without a sender, so its outbox rows are still pending
        seed_awaiting_booking()

        code, output = run_cli(capsys, "retry-notifications", "--database-url", cli_db_url)

        assert code == 0
        assert output["success"] is True
        assert output["sentCount"] == 3

    def test_database_url_required(self, capsys, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert main(["sweep"]) == 1
        assert "DATABASE_URL" in capsys.readouterr().err

    def test_invalid_now_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sweep", "--now", "yesterday"])

    def test_naive_now_is_utc(self):
        args = build_parser().parse_args(["sweep", "--now", "2024-03-08T13:00:00"])
        assert args.now.utcoffset().total_seconds() == 0

    def test_offset_now_is_converted_to_utc(self):
        args = build_parser().parse_args(["sweep", "--now", "2024-03-08T15:00:00+02:00"])
        assert args.now == datetime(2024, 3, 8, 13, 0, tzinfo=UTC)
        assert args.now.tzinfo is UTC
