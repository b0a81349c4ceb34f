"""
Collaborator interfaces consumed by the escrow kernel.

Responsibility:
    Narrow Protocols for the systems this core talks to but does not own:
    payment capture, notification delivery, dispute lookup and identity
    resolution.  Services depend on these Protocols only; concrete
    implementations are injected by the composition root (or by tests).

Architecture position:
    Kernel > Domain -- pure declarations, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from escrow_kernel.domain.dtos import NotificationType, Recipient, RecipientKind


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a capture attempt; the gateway itself is a black box."""

    succeeded: bool
    reference: str | None = None
    failure_reason: str | None = None

    @classmethod
    def success(cls, reference: str | None = None) -> PaymentResult:
        return cls(succeeded=True, reference=reference)

    @classmethod
    def failure(cls, reason: str) -> PaymentResult:
        return cls(succeeded=False, failure_reason=reason)


@dataclass(frozen=True)
class ResolvedParty:
    """A user identifier resolved to the client or provider entity it acts as."""

    kind: RecipientKind
    entity_id: str
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PaymentGateway(Protocol):

    def capture_payment(
        self,
        booking_id: UUID,
        method: str,
        details: dict[str, Any],
    ) -> PaymentResult:
        """Capture payment for a booking. Must not raise for a declined payment."""
        ...


@runtime_checkable
class NotificationSender(Protocol):
    """
    Best-effort delivery of one notification.

    Raising any exception marks the delivery failed; the triggering
    transition is never affected.
    """

    def notify(
        self,
        recipient: Recipient,
        notification_type: NotificationType,
        payload: dict[str, Any],
    ) -> None: ...


@runtime_checkable
class DisputeLookup(Protocol):

    def has_open_dispute(self, booking_id: UUID) -> bool: ...


@runtime_checkable
class IdentityResolver(Protocol):

    def resolve(self, user_id: str) -> ResolvedParty | None:
        """Return the party ``user_id`` acts as, or None if unknown."""
        ...
