"""
Module: escrow_kernel.models.booking
Responsibility: ORM persistence for bookings -- the system of record that
    every earnings figure is derived from.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain value types only.  MUST NOT import from services/ or
    selectors/.

Invariants enforced:
    - Money columns hold integer minor units; ``currency`` tags all of them.
    - ``version`` is the optimistic concurrency column: every UPDATE carries
      ``WHERE version = :old`` and a lost race raises StaleDataError.
    - Locked amounts never change once set and a released escrow is never
      un-released (ORM listeners in db/immutability.py).

Failure modes:
    - StaleDataError on a concurrent write (translated to
      PersistenceConflictError by the orchestrator).
    - ImmutabilityViolationError on an attempt to rewrite locked amounts.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Enum as SAEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from escrow_kernel.db.base import DecimalString, TrackedBase
from escrow_kernel.domain.dtos import BookingInfo
from escrow_kernel.domain.lifecycle import BookingStatus
from escrow_kernel.domain.values import Money


class BookingModel(TrackedBase):
    """
    A service booking between a client and a provider.

    Rows are never deleted; cancellation is a terminal status.
    """

    __tablename__ = "bookings"

    __table_args__ = (
        Index("idx_booking_provider", "provider_id"),
        Index("idx_booking_client", "client_id"),
        Index("idx_booking_status_deadline", "status", "client_confirm_deadline"),
        Index("idx_booking_release", "status", "escrow_released", "completed_at"),
    )

    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        SAEnum(BookingStatus, native_enum=False, length=40),
        default=BookingStatus.PENDING,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    total_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)
    commission_amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    provider_amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    is_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_confirm_deadline: Mapped[datetime | None] = mapped_column(nullable=True)

    escrow_released: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    escrow_released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Booking {self.id} status={self.status.value}>"

    # -- Money accessors ------------------------------------------------------

    @property
    def total_amount(self) -> Money:
        return Money.from_minor_units(self.total_amount_minor, self.currency)

    @property
    def commission_amount(self) -> Money | None:
        if self.commission_amount_minor is None:
            return None
        return Money.from_minor_units(self.commission_amount_minor, self.currency)

    @property
    def provider_amount(self) -> Money | None:
        if self.provider_amount_minor is None:
            return None
        return Money.from_minor_units(self.provider_amount_minor, self.currency)

    @property
    def amounts_locked(self) -> bool:
        return self.provider_amount_minor is not None

    def lock_amounts(self, commission: Money, provider_amount: Money) -> None:
        """Store the split computed at completion."""
        self.commission_amount_minor = commission.to_minor_units()
        self.provider_amount_minor = provider_amount.to_minor_units()

    def to_info(self) -> BookingInfo:
        return BookingInfo(
            id=self.id,
            client_id=self.client_id,
            provider_id=self.provider_id,
            service_id=self.service_id,
            status=self.status,
            total_amount=self.total_amount,
            commission_rate=self.commission_rate,
            commission_amount=self.commission_amount,
            provider_amount=self.provider_amount,
            is_paid=self.is_paid,
            payment_method=self.payment_method,
            scheduled_at=self.scheduled_at,
            completed_at=self.completed_at,
            client_confirmed_at=self.client_confirmed_at,
            client_confirm_deadline=self.client_confirm_deadline,
            escrow_released=self.escrow_released,
            escrow_released_at=self.escrow_released_at,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
            title=self.title,
            version=self.version,
        )
