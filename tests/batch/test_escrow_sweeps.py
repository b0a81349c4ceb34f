"""
Auto-confirm and escrow release sweeps end to end.

Scenario B: a booking completed at T is left alone by a sweep at T+47h and
auto-confirmed by a sweep at T+49h, with exactly two notifications.
Scenario C: an open dispute keeps the booking out of every sweep.
"""

from datetime import timedelta

from escrow_batch.domain.types import BatchItemStatus, BatchJobStatus
from escrow_batch.orchestrator import EscrowBatchOrchestrator
from escrow_batch.tasks.base import BatchItemInput
from escrow_batch.tasks.escrow_tasks import AUTO_CONFIRM_TASK, RELEASE_TASK, AutoConfirmTask
from escrow_config.schema import EscrowSettings, SweepSettings
from escrow_kernel.domain.dtos import NotificationType, RecipientKind
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money
from tests.conftest import CLIENT_ID


class PoisonedLookup:
    """DisputeLookup that blows up for one booking."""

    def __init__(self, poisoned_id):
        self.poisoned_id = poisoned_id

    def has_open_dispute(self, booking_id):
        if booking_id == self.poisoned_id:
            raise RuntimeError("corrupt dispute record")
        return False


# =============================================================================
# Auto-confirm sweep
# =============================================================================


class TestAutoConfirmSweep:

    def test_deadline_not_reached(self, batch_orchestrator, orchestrator, make_booking, clock):
        booking = make_booking()

        summary = batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=47))

        assert summary.confirmed_count == 0
        assert summary.checked_count == 0
        assert summary.success is True
        assert orchestrator.get_booking(booking.id).status is BookingStatus.AWAITING_CLIENT_CONFIRMATION

    def test_deadline_passed(self, batch_orchestrator, orchestrator, make_booking, clock, sender):
        booking = make_booking()
        sender.clear()
        sweep_time = clock.now() + timedelta(hours=49)

        summary = batch_orchestrator.run_auto_confirm_sweep(sweep_time)

        assert summary.to_dict() == {
            "success": True,
            "confirmedCount": 1,
            "checkedCount": 1,
            "failedCount": 0,
        }
        after = orchestrator.get_booking(booking.id)
        assert after.status is BookingStatus.COMPLETED
        assert after.client_confirmed_at == sweep_time
        assert after.provider_amount == Money.of("95.00", "GHS")
        assert len(sender.sent) == 2
        assert sender.types_for(RecipientKind.CLIENT) == [NotificationType.SERVICE_AUTO_CONFIRMED]
        assert sender.types_for(RecipientKind.PROVIDER) == [NotificationType.PAYMENT_RELEASED]

    def test_sweep_is_idempotent(self, batch_orchestrator, orchestrator, make_booking, clock, sender):
        booking = make_booking()
        batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))
        sender.clear()

        again = batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=50))

        assert again.confirmed_count == 0
        assert again.checked_count == 0
        assert sender.sent == []
        events = [e.event_type.value for e in orchestrator.get_booking_events(booking.id)]
        assert events.count("AUTO_CONFIRMED") == 1

    def test_disputed_booking_excluded(self, batch_orchestrator, orchestrator, make_booking, clock):
        booking = make_booking()
        orchestrator.open_dispute(booking.id, CLIENT_ID, "tap still leaking")

        summary = batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=72))

        assert summary.confirmed_count == 0
        assert summary.checked_count == 0
        assert orchestrator.get_booking(booking.id).status is BookingStatus.AWAITING_CLIENT_CONFIRMATION

    def test_client_confirmed_booking_is_not_picked_up(self, batch_orchestrator, orchestrator, make_booking, clock):
        booking = make_booking()
        orchestrator.confirm_by_client(booking.id, CLIENT_ID)

        summary = batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        assert summary.checked_count == 0
        events = [e.event_type.value for e in orchestrator.get_booking_events(booking.id)]
        assert "AUTO_CONFIRMED" not in events

    def test_poisoned_booking_does_not_abort_sweep(
        self, session_factory, settings, clock, sender, make_booking, orchestrator,
    ):
        first = make_booking(completed_at=clock.now() - timedelta(hours=3))
        poisoned = make_booking(completed_at=clock.now() - timedelta(hours=2))
        last = make_booking(completed_at=clock.now() - timedelta(hours=1))
        batch = EscrowBatchOrchestrator(
            session_factory, settings=settings, clock=clock,
            notification_sender=sender, dispute_lookup=PoisonedLookup(poisoned.id),
        )

        result = batch.runner.run(AUTO_CONFIRM_TASK, clock.now() + timedelta(hours=49))

        assert result.status is BatchJobStatus.PARTIALLY_COMPLETED
        assert (result.succeeded, result.failed, result.skipped) == (2, 1, 0)
        [failed] = [r for r in result.item_results if r.status is BatchItemStatus.FAILED]
        assert failed.item_key == str(poisoned.id)
        assert failed.error_code == "UNHANDLED_EXCEPTION"
        assert orchestrator.get_booking(first.id).status is BookingStatus.COMPLETED
        assert orchestrator.get_booking(last.id).status is BookingStatus.COMPLETED
        assert orchestrator.get_booking(poisoned.id).status is BookingStatus.AWAITING_CLIENT_CONFIRMATION

    def test_poisoned_sweep_summary(self, session_factory, settings, clock, sender, make_booking):
        make_booking()
        poisoned = make_booking()
        batch = EscrowBatchOrchestrator(
            session_factory, settings=settings, clock=clock,
            notification_sender=sender, dispute_lookup=PoisonedLookup(poisoned.id),
        )

        summary = batch.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        assert summary.confirmed_count == 1
        assert summary.failed_count == 1
        assert summary.success is True

    def test_only_failures_mark_sweep_unsuccessful(self, session_factory, settings, clock, sender, make_booking):
        poisoned = make_booking()
        batch = EscrowBatchOrchestrator(
            session_factory, settings=settings, clock=clock,
            notification_sender=sender, dispute_lookup=PoisonedLookup(poisoned.id),
        )

        summary = batch.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        assert summary.success is False
        assert summary.to_dict()["failedCount"] == 1

    def test_sweep_pages_past_batch_limit(self, session_factory, clock, sender, make_booking, orchestrator):
        bookings = [make_booking() for _ in range(3)]
        batch = EscrowBatchOrchestrator(
            session_factory, settings=EscrowSettings(sweep=SweepSettings(batch_limit=2)),
            clock=clock, notification_sender=sender,
        )

        summary = batch.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        assert summary.confirmed_count == 3
        assert summary.checked_count == 3
        for booking in bookings:
            assert orchestrator.get_booking(booking.id).status is BookingStatus.COMPLETED

    def test_exact_multiple_of_batch_limit(self, session_factory, clock, sender, make_booking):
        for _ in range(4):
            make_booking()
        batch = EscrowBatchOrchestrator(
            session_factory, settings=EscrowSettings(sweep=SweepSettings(batch_limit=2)),
            clock=clock, notification_sender=sender,
        )

        summary = batch.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        assert summary.checked_count == 4
        assert summary.confirmed_count == 4

    def test_no_longer_eligible_item_is_skipped(self, orchestrator, make_booking, clock, session, policy):
        booking = make_booking()
        orchestrator.confirm_by_client(booking.id, CLIENT_ID)
        task = AutoConfirmTask(policy, clock=clock)
        item = BatchItemInput(item_index=0, item_key=str(booking.id), payload={"booking_id": str(booking.id)})

        result = task.execute_item(item, {}, session, clock.now() + timedelta(hours=49))

        assert result.status is BatchItemStatus.SKIPPED
        assert result.notification_ids == ()


# =============================================================================
# Escrow release sweep
# =============================================================================


class TestEscrowReleaseSweep:

    def test_hold_not_elapsed(self, batch_orchestrator, make_booking, clock):
        make_booking(BookingStatus.COMPLETED)

        summary = batch_orchestrator.run_escrow_release_sweep(clock.now() + timedelta(hours=47))

        assert summary.released_count == 0
        assert summary.total_released == Money.zero("GHS")

    def test_release_after_hold(self, batch_orchestrator, orchestrator, make_booking, clock, sender):
        booking = make_booking(BookingStatus.COMPLETED)
        sender.clear()

        summary = batch_orchestrator.run_escrow_release_sweep(clock.now() + timedelta(hours=48))

        assert summary.to_dict() == {
            "success": True,
            "releasedCount": 1,
            "checkedCount": 1,
            "failedCount": 0,
            "totalReleased": "95.00",
            "currency": "GHS",
        }
        assert orchestrator.get_booking(booking.id).escrow_released is True
        assert sender.types_for(RecipientKind.PROVIDER) == [NotificationType.ESCROW_RELEASED]

    def test_auto_confirmed_booking_released_after_hold(self, batch_orchestrator, make_booking, clock):
        make_booking(total="200.00")
        batch_orchestrator.run_auto_confirm_sweep(clock.now() + timedelta(hours=49))

        summary = batch_orchestrator.run_escrow_release_sweep(clock.now() + timedelta(hours=49))

        assert summary.released_count == 1
        assert summary.total_released == Money.of("190.00", "GHS")

    def test_disputed_booking_not_released(self, batch_orchestrator, orchestrator, make_booking, clock):
        booking = make_booking(BookingStatus.COMPLETED)
        orchestrator.open_dispute(booking.id, CLIENT_ID, "damaged cabinet")

        summary = batch_orchestrator.run_escrow_release_sweep(clock.now() + timedelta(hours=72))

        assert summary.checked_count == 0
        assert orchestrator.get_booking(booking.id).escrow_released is False

    def test_release_pages_past_batch_limit(self, session_factory, clock, sender, make_booking):
        for _ in range(3):
            make_booking(BookingStatus.COMPLETED)
        batch = EscrowBatchOrchestrator(
            session_factory, settings=EscrowSettings(sweep=SweepSettings(batch_limit=2)),
            clock=clock, notification_sender=sender,
        )

        summary = batch.run_escrow_release_sweep(clock.now() + timedelta(hours=48))

        assert summary.released_count == 3
        assert summary.checked_count == 3
        assert summary.total_released == Money.of("285.00", "GHS")

    def test_release_task_registered(self, batch_orchestrator):
        assert batch_orchestrator.task_registry.list_tasks() == (AUTO_CONFIRM_TASK, RELEASE_TASK)
