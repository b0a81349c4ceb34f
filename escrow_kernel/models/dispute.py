"""
Module: escrow_kernel.models.dispute
Responsibility: Minimal dispute record backing the default DisputeLookup.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one OPEN dispute per booking (partial uniqueness is checked by
      DisputeService before insert).
    - An OPEN dispute suppresses auto-confirmation and escrow release.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import Enum as SAEnum, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import TrackedBase, UUIDString
from escrow_kernel.domain.dtos import DisputeResolution


class DisputeStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class DisputeModel(TrackedBase):

    __tablename__ = "disputes"

    __table_args__ = (
        Index("idx_dispute_booking_status", "booking_id", "status"),
    )

    booking_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bookings.id"),
        nullable=False,
    )
    raised_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    status: Mapped[DisputeStatus] = mapped_column(
        SAEnum(DisputeStatus, native_enum=False, length=20),
        default=DisputeStatus.OPEN,
        nullable=False,
    )
    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolution: Mapped[DisputeResolution | None] = mapped_column(
        SAEnum(DisputeResolution, native_enum=False, length=20),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Dispute {self.id} booking={self.booking_id} status={self.status.value}>"
