"""Durable retry bookkeeping for deliveries that could not complete.

Each order owns at most one ``delivery_queue`` row. Every write that can race
(enqueue, claim, resolve) is a single conditional statement, so concurrent
retry triggers for the same order cannot create duplicates or double-claim.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import case, or_, select, update
from sqlalchemy.orm import Session

from rcon_courier.core.settings import settings
from rcon_courier.db.time import utcnow
from rcon_courier.db.upsert import upsert
from rcon_courier.models import DeliveryQueue, Order
from rcon_courier.models.delivery import (
    QUEUE_STATUS_DELIVERED,
    QUEUE_STATUS_FAILED,
    QUEUE_STATUS_PENDING,
    QUEUE_STATUS_PROCESSING,
    QUEUE_STATUS_QUEUED,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

ACTIVE_QUEUE_STATUSES = (QUEUE_STATUS_PENDING, QUEUE_STATUS_QUEUED, QUEUE_STATUS_PROCESSING)
TERMINAL_QUEUE_STATUSES = (QUEUE_STATUS_DELIVERED, QUEUE_STATUS_FAILED)


class DeliveryQueueError(RuntimeError):
    """Raised when the queue table is not in the state a write left it in."""


class DeliveryQueueManager:
    """Creates, claims and resolves queue entries."""

    def __init__(
        self,
        db: Session,
        *,
        max_attempts: int | None = None,
        backoff_seconds: int | None = None,
    ) -> None:
        self.db = db
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.delivery_max_attempts
        )
        self.backoff_seconds = (
            backoff_seconds
            if backoff_seconds is not None
            else settings.delivery_retry_backoff_seconds
        )

    def get_for_order(self, order_id: str) -> DeliveryQueue | None:
        """Return the queue entry for an order regardless of its status."""
        result = self.db.execute(
            select(DeliveryQueue)
            .where(DeliveryQueue.order_id == order_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    def get_active(self, order_id: str) -> DeliveryQueue | None:
        """Return the entry for an order if it is still awaiting delivery."""
        entry = self.get_for_order(order_id)
        if entry is not None and entry.status in ACTIVE_QUEUE_STATUSES:
            return entry
        return None

    def enqueue(
        self,
        order: Order,
        recipient: str,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> DeliveryQueue:
        """Create the entry for ``order`` or record one more failed attempt.

        A new entry starts at ``attempt_count=1``. An existing entry has its
        count incremented, never past ``max_attempts``; reaching the cap makes
        it terminally ``failed``.
        """
        now = now or utcnow()
        first_status = QUEUE_STATUS_QUEUED if self.max_attempts > 1 else QUEUE_STATUS_FAILED
        next_attempt_at = now + timedelta(seconds=self.backoff_seconds)

        def _on_conflict(excluded):
            reached_cap = DeliveryQueue.attempt_count + 1 >= DeliveryQueue.max_attempts
            return {
                "minecraft_ign": excluded.minecraft_ign,
                "attempt_count": case(
                    (reached_cap, DeliveryQueue.max_attempts),
                    else_=DeliveryQueue.attempt_count + 1,
                ),
                "status": case(
                    (reached_cap, QUEUE_STATUS_FAILED),
                    else_=QUEUE_STATUS_QUEUED,
                ),
                "last_attempt_at": excluded.last_attempt_at,
                "next_attempt_at": excluded.next_attempt_at,
                "error_message": excluded.error_message,
                "updated_at": excluded.updated_at,
            }

        upsert(
            self.db,
            DeliveryQueue,
            {
                "order_id": order.id,
                "minecraft_ign": recipient,
                "status": first_status,
                "attempt_count": 1,
                "max_attempts": self.max_attempts,
                "last_attempt_at": now,
                "next_attempt_at": next_attempt_at,
                "error_message": reason,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["order_id"],
            update_values=_on_conflict,
        )
        self.db.commit()

        entry = self.get_for_order(order.id)
        if entry is None:
            raise DeliveryQueueError(f"Queue entry for order {order.id} missing after upsert")
        logger.info(
            "Queue entry for order %s is %s after %d/%d attempts",
            order.id,
            entry.status,
            entry.attempt_count,
            entry.max_attempts,
        )
        return entry

    def retry_eligible(
        self,
        *,
        minecraft_ign: str | None = None,
        max_attempts: int | None = None,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeliveryQueue]:
        """Return queued entries that may still be retried automatically.

        Args:
            minecraft_ign: Restrict to one recipient.
            max_attempts: Override each entry's own cap.
            now: When given, also require the entry's backoff to have elapsed.
            limit: Maximum number of entries to return, oldest first.
        """
        cap = max_attempts if max_attempts is not None else DeliveryQueue.max_attempts
        stmt = select(DeliveryQueue).where(
            DeliveryQueue.status == QUEUE_STATUS_QUEUED,
            DeliveryQueue.attempt_count < cap,
        )
        if minecraft_ign is not None:
            stmt = stmt.where(DeliveryQueue.minecraft_ign == minecraft_ign)
        if now is not None:
            stmt = stmt.where(
                or_(DeliveryQueue.next_attempt_at.is_(None), DeliveryQueue.next_attempt_at <= now)
            )
        stmt = stmt.order_by(DeliveryQueue.created_at.asc(), DeliveryQueue.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt.execution_options(populate_existing=True)).scalars())

    def claim(self, entry: DeliveryQueue) -> bool:
        """Move a queued entry to processing; False if another worker got it."""
        result = self.db.execute(
            update(DeliveryQueue)
            .where(DeliveryQueue.id == entry.id, DeliveryQueue.status == QUEUE_STATUS_QUEUED)
            .values(status=QUEUE_STATUS_PROCESSING, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def release(self, entry: DeliveryQueue) -> None:
        """Return a claimed entry to the queue without counting an attempt."""
        self.db.execute(
            update(DeliveryQueue)
            .where(DeliveryQueue.id == entry.id, DeliveryQueue.status == QUEUE_STATUS_PROCESSING)
            .values(status=QUEUE_STATUS_QUEUED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

    def resolve(
        self,
        entry: DeliveryQueue,
        outcome: str,
        *,
        error: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Terminally mark an entry delivered or failed.

        Entries already delivered are left untouched. Returns True if this
        call changed the row.
        """
        if outcome not in TERMINAL_QUEUE_STATUSES:
            raise ValueError(f"Queue entries resolve to delivered or failed, not {outcome!r}")
        now = now or utcnow()
        values: dict[str, object] = {
            "status": outcome,
            "last_attempt_at": now,
            "next_attempt_at": None,
            "updated_at": now,
        }
        if error is not None:
            values["error_message"] = error
        result = self.db.execute(
            update(DeliveryQueue)
            .where(DeliveryQueue.id == entry.id, DeliveryQueue.status != QUEUE_STATUS_DELIVERED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        changed = result.rowcount == 1
        if changed:
            logger.info(
                "Queue entry %s for order %s resolved as %s", entry.id, entry.order_id, outcome
            )
        return changed
