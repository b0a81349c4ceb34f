"""
Optimistic-version conflicts and their bounded retry.

A concurrent writer is simulated in a single thread: the dispute lookup,
which runs after the booking row has been read, commits a version bump
(or a whole competing transition) from a second session.  The first
attempt's UPDATE then matches no row and the orchestrator retries from a
fresh read.

SQLite only: on PostgreSQL the second session would block on the row lock
taken by the first.
"""

from datetime import timedelta

import pytest

from escrow_config.loader import parse_settings
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.exceptions import NotEligibleForConfirmationError, TransientFailureError
from escrow_kernel.services.orchestrator import BookingOrchestrator
from tests.conftest import CLIENT_ID, ConcurrentWriterLookup

pytestmark = pytest.mark.usefixtures("sqlite_only")


class AutoConfirmingLookup:
    """Lets the deadline sweep win the race on the first lookup."""

    def __init__(self, rival: BookingOrchestrator, sweep_time):
        self.rival = rival
        self.sweep_time = sweep_time
        self.calls = 0

    def has_open_dispute(self, booking_id):
        self.calls += 1
        if self.calls == 1:
            self.rival.auto_confirm(booking_id, now=self.sweep_time)
        return False


def racing_orchestrator(session_factory, clock, policy, identity, lookup, **kwargs):
    return BookingOrchestrator(
        session_factory,
        clock=clock,
        policy=policy,
        identity_resolver=identity,
        dispute_lookup=lookup,
        **kwargs,
    )


class TestConflictRetry:

    def test_single_conflict_is_retried(
        self, session_factory, clock, policy, identity, make_booking, captured_logs,
    ):
        booking = make_booking()
        lookup = ConcurrentWriterLookup(session_factory, conflicts=1)
        racing = racing_orchestrator(session_factory, clock, policy, identity, lookup)

        confirmed = racing.confirm_by_client(booking.id, CLIENT_ID)

        assert confirmed.status is BookingStatus.COMPLETED
        assert lookup.calls == 2
        # one bump by the rival writer, one by our own transition
        assert confirmed.version == booking.version + 2
        retries = [r for r in captured_logs() if r["message"] == "persistence_conflict_retry"]
        assert len(retries) == 1
        assert retries[0]["attempt"] == 1
        assert retries[0]["error_code"] == "PERSISTENCE_CONFLICT"

    def test_retries_are_bounded(
        self, session_factory, clock, policy, identity, make_booking, orchestrator, captured_logs,
    ):
        booking = make_booking()
        lookup = ConcurrentWriterLookup(session_factory, conflicts=10)
        racing = racing_orchestrator(
            session_factory, clock, policy, identity, lookup, max_conflict_attempts=2,
        )

        with pytest.raises(TransientFailureError) as exc_info:
            racing.confirm_by_client(booking.id, CLIENT_ID)

        assert exc_info.value.code == "TRANSIENT_FAILURE"
        assert lookup.calls == 2
        after = orchestrator.get_booking(booking.id)
        assert after.status is BookingStatus.AWAITING_CLIENT_CONFIRMATION
        assert after.client_confirmed_at is None
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("persistence_conflict_retry") == 2
        assert "persistence_conflict_exhausted" in messages

    def test_confirm_loses_race_to_auto_confirm(
        self, session_factory, clock, policy, identity, make_booking, orchestrator,
    ):
        booking = make_booking()
        sweep_time = clock.now() + timedelta(hours=49)
        rival = BookingOrchestrator(session_factory, clock=clock, policy=policy)
        lookup = AutoConfirmingLookup(rival, sweep_time)
        racing = racing_orchestrator(session_factory, clock, policy, identity, lookup)

        with pytest.raises(NotEligibleForConfirmationError, match="COMPLETED"):
            racing.confirm_by_client(booking.id, CLIENT_ID)

        events = [e.event_type.value for e in orchestrator.get_booking_events(booking.id)]
        assert events.count("AUTO_CONFIRMED") == 1
        assert "CLIENT_CONFIRMED" not in events
        assert orchestrator.get_booking(booking.id).client_confirmed_at == sweep_time

    def test_release_retried_after_conflict(
        self, session_factory, clock, policy, identity, make_booking, orchestrator,
    ):
        booking = make_booking(BookingStatus.COMPLETED)
        lookup = ConcurrentWriterLookup(session_factory, conflicts=1)
        racing = racing_orchestrator(session_factory, clock, policy, identity, lookup)

        released = racing.release_escrow(booking.id, now=clock.now() + timedelta(hours=48))

        assert released.escrow_released is True
        events = [e.event_type.value for e in orchestrator.get_booking_events(booking.id)]
        assert events.count("ESCROW_RELEASED") == 1


class TestConflictRetryFromSettings:

    def test_configured_single_attempt_fails_on_first_conflict(
        self, session_factory, clock, identity, make_booking, orchestrator, captured_logs,
    ):
        booking = make_booking()
        lookup = ConcurrentWriterLookup(session_factory, conflicts=1)
        settings = parse_settings({"conflict_retry": {"max_attempts": 1}})
        racing = BookingOrchestrator.from_settings(
            session_factory, settings, clock=clock, identity_resolver=identity, dispute_lookup=lookup,
        )

        with pytest.raises(TransientFailureError):
            racing.confirm_by_client(booking.id, CLIENT_ID)

        assert lookup.calls == 1
        assert orchestrator.get_booking(booking.id).status is BookingStatus.AWAITING_CLIENT_CONFIRMATION
        assert "persistence_conflict_exhausted" in [r["message"] for r in captured_logs()]

    def test_default_settings_absorb_a_conflict(
        self, session_factory, clock, identity, make_booking,
    ):
        booking = make_booking()
        lookup = ConcurrentWriterLookup(session_factory, conflicts=2)
        racing = BookingOrchestrator.from_settings(
            session_factory, parse_settings({}), clock=clock, identity_resolver=identity, dispute_lookup=lookup,
        )

        confirmed = racing.confirm_by_client(booking.id, CLIENT_ID)

        assert confirmed.status is BookingStatus.COMPLETED
        assert lookup.calls == 3
