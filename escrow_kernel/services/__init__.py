"""Services for the escrow kernel (write side)."""

from escrow_kernel.services.booking_service import BookingLifecycleService
from escrow_kernel.services.dispute_service import DisputeOpened, DisputeService, SqlDisputeLookup
from escrow_kernel.services.notification_service import (
    DispatchSummary,
    NotificationDispatcher,
    NotificationOutboxService,
)
from escrow_kernel.services.orchestrator import BookingOrchestrator

__all__ = [
    "BookingLifecycleService",
    "BookingOrchestrator",
    "DispatchSummary",
    "DisputeOpened",
    "DisputeService",
    "NotificationDispatcher",
    "NotificationOutboxService",
    "SqlDisputeLookup",
]
