"""
BaseService -- abstract base for all kernel write services.

Responsibility:
    Common constructor and session contract for every service that mutates
    bookings, disputes or the outbox.  Services receive a SQLAlchemy
    ``Session`` and use ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or roll back themselves.  The
      BookingOrchestrator (or a sweep runner, or a test) owns the
      transaction, so a failed guard never partially applies.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from escrow_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries -- those belong in
          ``escrow_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
