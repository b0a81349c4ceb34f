"""
Notification outbox and dispatcher.

Responsibility:
    ``NotificationOutboxService`` writes notification requests into the
    outbox inside the transition's own transaction (flush-only).
    ``NotificationDispatcher`` delivers outbox rows through the injected
    ``NotificationSender`` after that transaction has committed, one short
    transaction per row.

Architecture position:
    Kernel > Services.  The dispatcher is the only kernel component that
    talks to the notification collaborator.

Invariants enforced:
    - At most once per transition event: the UNIQUE dedupe_key makes a
      second enqueue of the same event a no-op.
    - Delivery failure never rolls back or fails the triggering transition;
      it is logged and recorded on the row (FAILED, attempts, last_error).
    - Redelivery is explicit (``retry_failed``) and bounded by
      ``max_attempts``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from escrow_kernel.db.engine import session_scope
from escrow_kernel.domain.clock import Clock, SystemClock
from escrow_kernel.domain.dtos import NotificationRequest, NotificationType, Recipient
from escrow_kernel.domain.interfaces import NotificationSender
from escrow_kernel.exceptions import NotificationDispatchFailedError
from escrow_kernel.logging_config import get_logger
from escrow_kernel.models.notification import NotificationOutboxModel, OutboxStatus
from escrow_kernel.services.base import BaseService

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class DispatchSummary:
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int | bool]:
        return {
            "success": self.failed == 0,
            "sentCount": self.sent,
            "failedCount": self.failed,
            "skippedCount": self.skipped,
        }


class LoggingNotificationSender:
    """Sender that only logs; the default when no delivery channel is wired."""

    def notify(
        self,
        recipient: Recipient,
        notification_type: NotificationType,
        payload: dict[str, Any],
    ) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient_kind": recipient.kind.value,
                "recipient_id": recipient.id,
                "notification_type": notification_type.value,
            },
        )


class NotificationOutboxService(BaseService[NotificationOutboxModel]):
    """Flush-only writer of outbox rows."""

    def enqueue(self, request: NotificationRequest, now: datetime) -> UUID | None:
        """
        Add ``request`` to the outbox unless its dedupe_key is already there.

        Returns:
            The new row id, or None when the event was already enqueued.
        """
        existing = self.session.execute(
            select(NotificationOutboxModel.id).where(
                NotificationOutboxModel.dedupe_key == request.dedupe_key
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.debug(
                "notification_already_enqueued",
                extra={"dedupe_key": request.dedupe_key},
            )
            return None

        row = NotificationOutboxModel(
            dedupe_key=request.dedupe_key,
            recipient_kind=request.recipient.kind,
            recipient_id=request.recipient.id,
            notification_type=request.notification_type,
            payload=dict(request.payload),
            status=OutboxStatus.PENDING,
            attempts=0,
            enqueued_at=now,
        )
        self.session.add(row)
        self.session.flush()
        return row.id

    def enqueue_all(self, requests: Iterable[NotificationRequest], now: datetime) -> tuple[UUID, ...]:
        ids = (self.enqueue(request, now) for request in requests)
        return tuple(i for i in ids if i is not None)


class NotificationDispatcher:
    """
    Post-commit delivery of outbox rows.

    Each row is delivered in its own transaction so one failing recipient
    never affects another.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        sender: NotificationSender,
        clock: Clock | None = None,
        max_attempts: int = 5,
    ):
        self._session_factory = session_factory
        self._sender = sender
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts

    def dispatch(self, notification_ids: Iterable[UUID], now: datetime | None = None) -> DispatchSummary:
        """Deliver the given outbox rows."""
        sent = failed = skipped = 0
        for notification_id in notification_ids:
            outcome = self._deliver(notification_id, now or self._clock.now())
            if outcome is True:
                sent += 1
            elif outcome is False:
                failed += 1
            else:
                skipped += 1
        return DispatchSummary(sent=sent, failed=failed, skipped=skipped)

    def retry_failed(self, now: datetime | None = None, limit: int = 100) -> DispatchSummary:
        """
        Redeliver FAILED rows and PENDING rows left behind by a crash.

        Rows that have used up ``max_attempts`` are left alone.
        """
        with session_scope(self._session_factory) as session:
            ids = list(
                session.execute(
                    select(NotificationOutboxModel.id)
                    .where(
                        NotificationOutboxModel.status.in_(
                            (OutboxStatus.FAILED, OutboxStatus.PENDING)
                        ),
                        NotificationOutboxModel.attempts < self._max_attempts,
                    )
                    .order_by(NotificationOutboxModel.enqueued_at)
                    .limit(limit)
                ).scalars()
            )
        summary = self.dispatch(ids, now)
        logger.info(
            "notification_retry_completed",
            extra={"candidates": len(ids), **summary.to_dict()},
        )
        return summary

    def _deliver(self, notification_id: UUID, now: datetime) -> bool | None:
        """True if sent, False if delivery failed, None if there was nothing to do."""
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(NotificationOutboxModel)
                .where(NotificationOutboxModel.id == notification_id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None or row.status == OutboxStatus.SENT:
                return None
            if row.attempts >= self._max_attempts:
                logger.warning(
                    "notification_attempts_exhausted",
                    extra={"notification_id": str(row.id), "attempts": row.attempts},
                )
                return None

            row.attempts += 1
            try:
                self._sender.notify(row.recipient, row.notification_type, dict(row.payload or {}))
            except Exception as exc:
                error = NotificationDispatchFailedError(str(row.id), str(exc))
                row.status = OutboxStatus.FAILED
                row.last_error = error.reason[:1000]
                logger.warning(
                    "notification_dispatch_failed",
                    extra={
                        "notification_id": str(row.id),
                        "dedupe_key": row.dedupe_key,
                        "notification_type": row.notification_type.value,
                        "attempts": row.attempts,
                        "error_code": error.code,
                        "error": error.reason,
                    },
                )
                return False

            row.status = OutboxStatus.SENT
            row.sent_at = now
            row.last_error = None
            logger.info(
                "notification_dispatched",
                extra={
                    "notification_id": str(row.id),
                    "notification_type": row.notification_type.value,
                    "recipient_kind": row.recipient_kind.value,
                    "recipient_id": row.recipient_id,
                },
            )
            return True
