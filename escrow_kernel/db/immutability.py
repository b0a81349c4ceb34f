"""
ORM-level immutability enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity              | When immutable                  | Fields
--------------------|---------------------------------|----------------------------
BookingEventModel   | ALWAYS (from creation)          | every column, no DELETE
BookingModel        | once amounts are locked         | commission/provider amount
BookingModel        | once escrow is released         | escrow_released, *_at
BookingModel        | ALWAYS                          | no DELETE

SQLAlchemy fires ``before_update``/``before_delete`` before SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

A failed check aborts the flush; the caller's transaction is rolled back by
whoever owns it.

===============================================================================
USAGE
===============================================================================

    from escrow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; idempotent

Tests that need to fabricate broken rows may call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, inspect

from escrow_kernel.exceptions import ImmutabilityViolationError
from escrow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LOCKED_AMOUNT_FIELDS = ("commission_amount_minor", "provider_amount_minor", "total_amount_minor", "currency")
_RELEASE_FIELDS = ("escrow_released", "escrow_released_at")

_registered = False


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_booking_event_update(mapper, connection, target):
    _block("BookingEvent", target.id, "UPDATE", "Booking ledger events are append-only")


def _check_booking_event_delete(mapper, connection, target):
    _block("BookingEvent", target.id, "DELETE", "Booking ledger events are append-only")


def _check_booking_update(mapper, connection, target):
    """Reject rewriting locked amounts or un-releasing escrow."""
    state = inspect(target)

    for field_name in _LOCKED_AMOUNT_FIELDS:
        history = state.attrs[field_name].history
        if not history.has_changes():
            continue
        old = history.deleted[0] if history.deleted else None
        if field_name in ("total_amount_minor", "currency"):
            locked = target.provider_amount_minor is not None or target.commission_amount_minor is not None
            if locked:
                _block("Booking", target.id, "UPDATE",
                       f"{field_name} cannot change after amounts are locked")
        elif old is not None:
            _block("Booking", target.id, "UPDATE",
                   f"{field_name} is locked at completion and cannot change")

    released_history = state.attrs["escrow_released"].history
    if released_history.deleted and released_history.deleted[0] is True:
        _block("Booking", target.id, "UPDATE", "released escrow cannot be reverted")
    at_history = state.attrs["escrow_released_at"].history
    if at_history.deleted and at_history.deleted[0] is not None and at_history.has_changes():
        _block("Booking", target.id, "UPDATE", "escrow release time cannot change")


def _check_booking_delete(mapper, connection, target):
    _block("Booking", target.id, "DELETE", "Bookings are never deleted; cancel instead")


def register_immutability_listeners() -> None:
    """Register all immutability listeners (idempotent)."""
    global _registered
    if _registered:
        return

    from escrow_kernel.models.booking import BookingModel
    from escrow_kernel.models.booking_event import BookingEventModel

    event.listen(BookingEventModel, "before_update", _check_booking_event_update)
    event.listen(BookingEventModel, "before_delete", _check_booking_event_delete)
    event.listen(BookingModel, "before_update", _check_booking_update)
    event.listen(BookingModel, "before_delete", _check_booking_delete)
    _registered = True
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    global _registered
    from escrow_kernel.models.booking import BookingModel
    from escrow_kernel.models.booking_event import BookingEventModel

    _safe_remove_listener(BookingEventModel, "before_update", _check_booking_event_update)
    _safe_remove_listener(BookingEventModel, "before_delete", _check_booking_event_delete)
    _safe_remove_listener(BookingModel, "before_update", _check_booking_update)
    _safe_remove_listener(BookingModel, "before_delete", _check_booking_delete)
    _registered = False
