"""Background retries for queued deliveries of players who are online.

Join events drain the queue in the common case. The sweeper covers the rest:
when the retry on join fails because every server was unreachable, the entry
is re-queued and would otherwise wait for the player to join again.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rcon_courier.core.settings import settings
from rcon_courier.db.session import SessionLocal
from rcon_courier.db.time import utcnow
from rcon_courier.repositories.player_repo import PlayerStatusRepository
from rcon_courier.services.delivery import DeliveryService
from rcon_courier.services.delivery_queue import DeliveryQueueManager
from rcon_courier.services.presence import PresenceTracker, QueuedDeliveryResult
from rcon_courier.services.rcon_client import RconClient, get_rcon_client

# Configure logger for this module
logger = logging.getLogger(__name__)


class QueueSweeper:
    """Periodically retries eligible queue entries for online recipients."""

    def __init__(
        self,
        client: RconClient | None = None,
        db_session: Session | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            client: Optional RCON client. If None, uses the global client.
            db_session: Optional database session. If None, creates new sessions as needed.
        """
        self.client = client or get_rcon_client()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._db_session = db_session

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        interval = max(0.1, float(settings.queue_sweep_interval_seconds))

        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except SQLAlchemyError as e:
                logger.error("QueueSweeper encountered database error: %s", e, exc_info=True)
            except (ValueError, TypeError, KeyError, AttributeError, ArithmeticError) as e:
                logger.error(
                    "QueueSweeper encountered data processing error: %s", e, exc_info=True
                )
            except Exception as e:
                # The loop outlives any single bad batch.
                logger.error("QueueSweeper encountered unexpected error: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue

    async def sweep_once(self) -> list[QueuedDeliveryResult]:
        """Retry one batch of eligible entries and return their outcomes."""
        if self._db_session:
            # Use provided session
            return await self._sweep_with_session(self._db_session)
        # Create new session
        with SessionLocal() as db:
            return await self._sweep_with_session(db)

    async def _sweep_with_session(self, db: Session) -> list[QueuedDeliveryResult]:
        queue = DeliveryQueueManager(db)
        players = PlayerStatusRepository(db)
        tracker = PresenceTracker(db, DeliveryService(db, self.client, queue=queue), queue=queue)

        entries = queue.retry_eligible(now=utcnow(), limit=settings.queue_sweep_batch_size)
        logger.debug("Found %d retry-eligible queue entries", len(entries))

        results: list[QueuedDeliveryResult] = []
        for entry in entries:
            if not players.is_online(entry.minecraft_ign):
                continue
            results.append(await tracker.retry_entry(entry))
        return results
