"""ORM models for the escrow kernel."""

from escrow_kernel.models.booking import BookingModel
from escrow_kernel.models.booking_event import BookingEventModel
from escrow_kernel.models.dispute import DisputeModel, DisputeStatus
from escrow_kernel.models.notification import NotificationOutboxModel, OutboxStatus

__all__ = [
    "BookingModel",
    "BookingEventModel",
    "DisputeModel",
    "DisputeStatus",
    "NotificationOutboxModel",
    "OutboxStatus",
]
