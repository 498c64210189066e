"""Player presence tracking and join-triggered queue draining."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from rcon_courier.db.time import as_utc, utcnow
from rcon_courier.models import DeliveryQueue, Order
from rcon_courier.models.delivery import QUEUE_STATUS_FAILED
from rcon_courier.repositories.player_repo import PlayerStatusRepository
from rcon_courier.services.delivery import (
    DeliveryError,
    DeliveryResult,
    DeliveryService,
    last_error,
)
from rcon_courier.services.delivery_queue import DeliveryQueueManager

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass
class QueuedDeliveryResult:
    """Outcome of one queued order retried on join."""

    order_id: str
    success: bool
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"order_id": self.order_id, "success": self.success}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class JoinResult:
    player: str
    server: str | None
    delivery_results: list[QueuedDeliveryResult] = field(default_factory=list)

    @property
    def deliveries_processed(self) -> int:
        return len(self.delivery_results)


def server_matches_mode(server_name: str | None, mode: str | None) -> bool:
    """Heuristically decide whether a joined server can host a product mode.

    The game-server plugin only reports a free-text server name, so the mode
    tag must appear in it (case-insensitive). A missing server name or mode
    matches everything.
    """
    if not server_name or not mode:
        return True
    return mode.lower() in server_name.lower()


class PresenceTracker:
    """Records join/leave events and retries queued work on join."""

    def __init__(
        self,
        db: Session,
        delivery: DeliveryService | None = None,
        *,
        queue: DeliveryQueueManager | None = None,
    ) -> None:
        self.db = db
        self.players = PlayerStatusRepository(db)
        self.queue = queue or DeliveryQueueManager(db)
        self._delivery = delivery

    @property
    def delivery(self) -> DeliveryService:
        if self._delivery is None:
            self._delivery = DeliveryService(self.db, queue=self.queue)
        return self._delivery

    async def join(
        self,
        minecraft_ign: str,
        server_name: str | None = None,
        timestamp: datetime | None = None,
    ) -> JoinResult:
        """Mark the player online and retry their queued deliveries."""
        now = as_utc(timestamp) if timestamp else utcnow()
        logger.info("Player %s joined %s", minecraft_ign, server_name or "unknown server")
        self.players.mark_online(minecraft_ign, server_name, now)
        self.db.commit()

        result = JoinResult(player=minecraft_ign, server=server_name)
        queued = self.queue.retry_eligible(minecraft_ign=minecraft_ign)
        if not queued:
            return result

        logger.info("Found %d queued deliveries for %s", len(queued), minecraft_ign)
        for entry in queued:
            if not server_matches_mode(server_name, self._product_mode(entry)):
                logger.debug(
                    "Skipping order %s: server %s does not match its mode",
                    entry.order_id,
                    server_name,
                )
                continue
            result.delivery_results.append(await self.retry_entry(entry))
        return result

    async def leave(
        self,
        minecraft_ign: str,
        server_name: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        """Mark the player offline and clear their current server."""
        logger.info("Player %s left %s", minecraft_ign, server_name or "unknown server")
        at = as_utc(timestamp) if timestamp else utcnow()
        self.players.mark_offline(minecraft_ign, at)
        self.db.commit()

    async def retry_entry(self, entry: DeliveryQueue) -> QueuedDeliveryResult:
        """Claim a queue entry and run delivery for its order once.

        Queue bookkeeping for completed runs is done by the delivery service;
        this only handles entries it could not hand over.
        """
        if not self.queue.claim(entry):
            return QueuedDeliveryResult(
                order_id=entry.order_id,
                success=False,
                error="Delivery already in progress",
            )

        outcome: DeliveryResult | None = None
        try:
            outcome = await self.delivery.deliver(entry.order_id, mode="deliver")
        except DeliveryError as err:
            logger.error("Delivery failed for order %s: %s", entry.order_id, err)
            self.queue.resolve(entry, QUEUE_STATUS_FAILED, error=str(err))
            return QueuedDeliveryResult(order_id=entry.order_id, success=False, error=str(err))
        finally:
            # Never leave a claim behind when delivery produced no outcome.
            if outcome is None or outcome.skipped:
                self.queue.release(entry)

        if outcome.success:
            return QueuedDeliveryResult(order_id=entry.order_id, success=True)
        error = last_error(outcome.logs) or outcome.message or "Delivery failed"
        return QueuedDeliveryResult(order_id=entry.order_id, success=False, error=error)

    def _product_mode(self, entry: DeliveryQueue) -> str | None:
        order = self.db.get(Order, entry.order_id)
        if order is None or order.product is None:
            return None
        return order.product.mode
