"""
Module: escrow_kernel.models.notification
Responsibility: Transactional outbox for notifications requested by booking
    transitions.
Architecture position: Kernel > Models.

Invariants enforced:
    - UNIQUE dedupe_key (``<booking_id>:<event>:<recipient_kind>``): a
      transition event enqueues each recipient's notification at most once,
      however many times the operation that produced it is re-run.
    - Rows are written in the transition's own transaction and delivered
      only after that transaction commits.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, BigInteger, Enum as SAEnum, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase
from escrow_kernel.domain.dtos import NotificationType, Recipient, RecipientKind


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class NotificationOutboxModel(TrackedBase):

    __tablename__ = "notification_outbox"

    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_notification_dedupe_key"),
        Index("idx_notification_status", "status"),
    )

    dedupe_key: Mapped[str] = mapped_column(String(200), nullable=False)
    recipient_kind: Mapped[RecipientKind] = mapped_column(
        SAEnum(RecipientKind, native_enum=False, length=20),
        nullable=False,
    )
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        SAEnum(NotificationType, native_enum=False, length=60),
        nullable=False,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[OutboxStatus] = mapped_column(
        SAEnum(OutboxStatus, native_enum=False, length=20),
        default=OutboxStatus.PENDING,
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    enqueued_at: Mapped[datetime] = mapped_column(nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def recipient(self) -> Recipient:
        return Recipient(self.recipient_kind, self.recipient_id)

    def __repr__(self) -> str:
        return f"<Notification {self.dedupe_key} status={self.status.value}>"
