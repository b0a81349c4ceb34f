"""
Module: escrow_kernel.models.booking_event
Responsibility: Append-only audit ledger of booking transitions.
Architecture position: Kernel > Models.  May import from db/base.py only (plus
    pure domain enums).

Invariants enforced:
    - One row per recorded transition, written in the same transaction as
      the booking change it describes.
    - Rows are immutable from creation: UPDATE and DELETE are rejected by
      ORM listeners (db/immutability.py).
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Enum as SAEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import Base, UUIDString
from escrow_kernel.domain.dtos import BookingEventType
from escrow_kernel.domain.lifecycle import BookingStatus


class BookingEventModel(Base):
    """One immutable ledger row recording a booking transition."""

    __tablename__ = "booking_events"

    __table_args__ = (
        Index("idx_booking_event_booking", "booking_id", "occurred_at"),
    )

    booking_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    event_type: Mapped[BookingEventType] = mapped_column(
        SAEnum(BookingEventType, native_enum=False, length=40),
        nullable=False,
    )
    from_status: Mapped[BookingStatus | None] = mapped_column(
        SAEnum(BookingStatus, native_enum=False, length=40),
        nullable=True,
    )
    to_status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus, native_enum=False, length=40),
        nullable=False,
    )
    amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<BookingEvent {self.event_type.value} booking={self.booking_id}>"
