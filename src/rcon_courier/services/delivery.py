"""Order delivery orchestration.

This module turns a paid order into RCON commands executed on one of the
product's candidate servers:

- Commands run strictly in ``order_index`` order with their configured delay
- A failing command abandons the server and the whole script is retried on
  the next candidate, so delivery commands must be idempotent
- Every command attempt is written to ``delivery_log``
- When every candidate fails, the order is queued for the recipient's next
  join (offline) or marked failed (online)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rcon_courier.core.settings import settings
from rcon_courier.db.time import utcnow
from rcon_courier.models import DeliveryCommand, DeliveryLog, Order, RconServer
from rcon_courier.models.delivery import (
    LOG_STATUS_FAILED,
    LOG_STATUS_SUCCESS,
    QUEUE_STATUS_DELIVERED,
    QUEUE_STATUS_FAILED,
    QUEUE_STATUS_QUEUED,
)
from rcon_courier.models.order import (
    DELIVERY_STATUS_DELIVERED,
    DELIVERY_STATUS_FAILED,
    DELIVERY_STATUS_PENDING,
    DELIVERY_STATUS_PROCESSING,
    DELIVERY_STATUS_QUEUED,
    PAYMENT_STATUS_COMPLETED,
)
from rcon_courier.repositories.player_repo import PlayerStatusRepository
from rcon_courier.repositories.server_repo import ServerRepository
from rcon_courier.services.delivery_queue import DeliveryQueueManager
from rcon_courier.services.rcon_client import RconClient, RconError, get_rcon_client
from rcon_courier.utils.placeholders import RenderContext, render_command

# Configure logger for this module
logger = logging.getLogger(__name__)

DeliveryMode = Literal["deliver", "retry"]

MISSING_CREDENTIAL_ERROR = "No RCON password configured"
QUEUED_REASON = "Initial delivery failed, queued for retry"

# Order statuses each mode may claim for processing. Only an operator retry
# reopens a terminally failed order.
_CLAIMABLE_STATUSES: dict[str, tuple[str, ...]] = {
    "deliver": (DELIVERY_STATUS_PENDING, DELIVERY_STATUS_QUEUED),
    "retry": (DELIVERY_STATUS_PENDING, DELIVERY_STATUS_QUEUED, DELIVERY_STATUS_FAILED),
}


class DeliveryError(RuntimeError):
    """Base exception for order-level delivery failures."""


class OrderNotFoundError(DeliveryError):
    """Raised when the requested order does not exist."""


class PaymentNotCompletedError(DeliveryError):
    """Raised when delivery is requested for an unpaid order."""


class NoServersAvailableError(DeliveryError):
    """Raised when no enabled server is eligible for the order's product."""


@dataclass
class DeliveryAttempt:
    """Outcome of one command on one server, as reported to callers."""

    server: str
    command: str | None
    success: bool
    response: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "server": self.server,
            "command": self.command,
            "success": self.success,
        }
        if self.response is not None:
            data["response"] = self.response
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class DeliveryResult:
    """Final outcome of a ``deliver`` call."""

    order_id: str
    status: str
    success: bool
    queued: bool = False
    skipped: bool = False
    message: str | None = None
    logs: list[DeliveryAttempt] = field(default_factory=list)


class DeliveryService:
    """Runs the delivery state machine for single orders.

    Instances are cheap; create one per session or request. The RCON client
    and sleep function are injectable for tests.
    """

    def __init__(
        self,
        db: Session,
        client: RconClient | None = None,
        *,
        queue: DeliveryQueueManager | None = None,
        deadline_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.db = db
        self.client = client or get_rcon_client()
        self.queue = queue or DeliveryQueueManager(db)
        self.servers = ServerRepository(db)
        self.players = PlayerStatusRepository(db)
        self.deadline_seconds = (
            deadline_seconds
            if deadline_seconds is not None
            else settings.delivery_deadline_seconds
        )
        self._sleep = sleep

    async def deliver(self, order_id: str, mode: DeliveryMode = "deliver") -> DeliveryResult:
        """Deliver an order, failing over across candidate servers.

        Raises:
            OrderNotFoundError: If the order does not exist.
            PaymentNotCompletedError: If the order is not paid.
            NoServersAvailableError: If no server is eligible for the product.

        Any other error raised mid-delivery fails the order before propagating.
        """
        if mode not in _CLAIMABLE_STATUSES:
            raise ValueError(f"Unknown delivery mode: {mode!r}")

        order = self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        if order.payment_status != PAYMENT_STATUS_COMPLETED:
            raise PaymentNotCompletedError(f"Payment not completed for order {order_id}")

        logger.info("Processing delivery request: order=%s mode=%s", order.id, mode)

        if order.delivery_status == DELIVERY_STATUS_DELIVERED:
            self._resolve_queue_entry(order, QUEUE_STATUS_DELIVERED)
            return DeliveryResult(
                order_id=order.id,
                status=DELIVERY_STATUS_DELIVERED,
                success=True,
                message="Order already delivered",
            )

        claimable = _CLAIMABLE_STATUSES[mode]
        commands = self._load_commands(order)
        if not commands:
            logger.info("No delivery commands configured for product %s", order.product_id)
            if not self._transition(order, claimable, DELIVERY_STATUS_DELIVERED, delivery_log=[]):
                return self._skipped(order)
            self._resolve_queue_entry(order, QUEUE_STATUS_DELIVERED)
            return DeliveryResult(
                order_id=order.id,
                status=DELIVERY_STATUS_DELIVERED,
                success=True,
                message="No delivery commands configured",
            )

        candidates = self.servers.candidates_for(order.product)
        if not candidates:
            logger.error("No enabled RCON servers found for order %s", order.id)
            if self._transition(order, claimable, DELIVERY_STATUS_FAILED):
                self._resolve_queue_entry(
                    order, QUEUE_STATUS_FAILED, error="No RCON servers available"
                )
            raise NoServersAvailableError("No RCON servers available")

        if not self._transition(order, claimable, DELIVERY_STATUS_PROCESSING):
            return self._skipped(order)

        recipient = order.recipient_ign
        context = RenderContext(
            player=recipient,
            quantity=order.quantity,
            product_name=order.product.name or "",
        )
        logger.info("Delivering order %s to %s", order.id, recipient)

        attempts: list[DeliveryAttempt] = []
        try:
            delivered = await self._run_candidates(order, candidates, commands, context, attempts)
        except Exception as err:
            logger.error("Unexpected error while delivering order %s", order.id, exc_info=True)
            self._abort(order, attempts, f"Unexpected delivery error: {err!r}")
            raise

        if delivered:
            return self._finish(order, DELIVERY_STATUS_DELIVERED, attempts)
        return self._finish_exhausted(order, recipient, attempts)

    def _load_commands(self, order: Order) -> list[DeliveryCommand]:
        result = self.db.execute(
            select(DeliveryCommand)
            .where(
                DeliveryCommand.product_id == order.product_id,
                DeliveryCommand.enabled.is_(True),
            )
            .order_by(DeliveryCommand.order_index.asc())
        )
        return list(result.scalars())

    async def _run_candidates(
        self,
        order: Order,
        candidates: Sequence[RconServer],
        commands: Sequence[DeliveryCommand],
        context: RenderContext,
        attempts: list[DeliveryAttempt],
    ) -> bool:
        started = time.monotonic()

        for server in candidates:
            if self.deadline_seconds and time.monotonic() - started > self.deadline_seconds:
                logger.warning(
                    "Delivery deadline of %.1fs exceeded for order %s; not trying %s",
                    self.deadline_seconds,
                    order.id,
                    server.name,
                )
                break

            if not self.client.has_credential(server):
                logger.error("No RCON password configured for server: %s", server.name)
                attempts.append(
                    self._record(order, server, None, success=False, error=MISSING_CREDENTIAL_ERROR)
                )
                continue

            if await self._run_script(order, server, commands, context, attempts):
                logger.info("All commands executed successfully on %s", server.name)
                return True
            logger.warning(
                "Command failed on %s for order %s, trying next server if available",
                server.name,
                order.id,
            )

        return False

    async def _run_script(
        self,
        order: Order,
        server: RconServer,
        commands: Sequence[DeliveryCommand],
        context: RenderContext,
        attempts: list[DeliveryAttempt],
    ) -> bool:
        """Execute every command on one server; stop at the first failure."""
        for command in commands:
            if command.delay_ms > 0:
                await self._sleep(command.delay_ms / 1000)

            rendered = render_command(command.command_text, context)
            started = time.monotonic()
            try:
                response = await self.client.execute(server, rendered)
            except RconError as err:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                attempts.append(
                    self._record(
                        order,
                        server,
                        rendered,
                        success=False,
                        error=str(err),
                        execution_time_ms=elapsed_ms,
                    )
                )
                return False

            elapsed_ms = int((time.monotonic() - started) * 1000)
            attempts.append(
                self._record(
                    order,
                    server,
                    rendered,
                    success=True,
                    response=response,
                    execution_time_ms=elapsed_ms,
                )
            )
        return True

    def _record(
        self,
        order: Order,
        server: RconServer,
        command: str | None,
        *,
        success: bool,
        response: str | None = None,
        error: str | None = None,
        execution_time_ms: int | None = None,
    ) -> DeliveryAttempt:
        """Append one audit row and return its caller-facing counterpart."""
        self.db.add(
            DeliveryLog(
                order_id=order.id,
                rcon_server_id=server.id,
                command_text=command,
                status=LOG_STATUS_SUCCESS if success else LOG_STATUS_FAILED,
                response=response,
                error_message=error,
                execution_time_ms=execution_time_ms,
            )
        )
        self.db.commit()
        return DeliveryAttempt(
            server=server.name,
            command=command,
            success=success,
            response=response,
            error=error,
        )

    def _finish_exhausted(
        self,
        order: Order,
        recipient: str,
        attempts: list[DeliveryAttempt],
    ) -> DeliveryResult:
        """Queue or fail an order after every candidate failed.

        Orders already in the queue always record the attempt there; new
        failures are queued only while the recipient is offline.
        """
        entry = self.queue.get_active(order.id)
        if entry is None and self.players.is_online(recipient):
            logger.info(
                "All servers failed while %s is online; failing order %s", recipient, order.id
            )
            return self._finish(order, DELIVERY_STATUS_FAILED, attempts)

        if entry is None:
            reason, message = QUEUED_REASON, "Player offline, delivery queued for when they join"
        else:
            reason = last_error(attempts) or "Delivery failed"
            message = "Delivery failed, queued for another retry"
        entry = self.queue.enqueue(order, recipient, reason)
        if entry.status == QUEUE_STATUS_QUEUED:
            result = self._finish(order, DELIVERY_STATUS_QUEUED, attempts)
            if not result.skipped:
                result.queued = True
                result.message = message
            return result
        return self._finish(order, DELIVERY_STATUS_FAILED, attempts)

    def _finish(
        self,
        order: Order,
        status: str,
        attempts: list[DeliveryAttempt],
    ) -> DeliveryResult:
        snapshot = [attempt.as_dict() for attempt in attempts]
        if not self._transition(
            order, (DELIVERY_STATUS_PROCESSING,), status, delivery_log=snapshot
        ):
            # Another attempt finalized this order first; keep its outcome.
            result = self._skipped(order)
            result.logs = attempts
            return result

        if status == DELIVERY_STATUS_DELIVERED:
            self._resolve_queue_entry(order, QUEUE_STATUS_DELIVERED)
        logger.info("Delivery completed for order %s: %s", order.id, status)
        return DeliveryResult(
            order_id=order.id,
            status=status,
            success=status == DELIVERY_STATUS_DELIVERED,
            logs=attempts,
        )

    def _abort(self, order: Order, attempts: list[DeliveryAttempt], error: str) -> None:
        """Fail an in-flight order so it is not left stuck in processing.

        The order stays reopenable through an operator retry.
        """
        if not self.db.is_active:
            self.db.rollback()
        snapshot = [attempt.as_dict() for attempt in attempts]
        if self._transition(
            order, (DELIVERY_STATUS_PROCESSING,), DELIVERY_STATUS_FAILED, delivery_log=snapshot
        ):
            self._resolve_queue_entry(order, QUEUE_STATUS_FAILED, error=error)

    def _transition(
        self,
        order: Order,
        expected: Sequence[str],
        status: str,
        **values: Any,
    ) -> bool:
        """Conditionally move the order to ``status``.

        Returns False, leaving the row untouched, when the order is no longer
        in one of the ``expected`` states.
        """
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.delivery_status.in_(tuple(expected)))
            .values(delivery_status=status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(order)
        if result.rowcount != 1:
            logger.warning(
                "Order %s is %s, expected one of %s; skipping transition to %s",
                order.id,
                order.delivery_status,
                ", ".join(expected),
                status,
            )
            return False
        return True

    def _skipped(self, order: Order) -> DeliveryResult:
        return DeliveryResult(
            order_id=order.id,
            status=order.delivery_status,
            success=order.delivery_status == DELIVERY_STATUS_DELIVERED,
            skipped=True,
            message=f"Order is {order.delivery_status}; no delivery performed",
        )

    def _resolve_queue_entry(self, order: Order, outcome: str, error: str | None = None) -> None:
        entry = self.queue.get_active(order.id)
        if entry is not None:
            self.queue.resolve(entry, outcome, error=error)


def last_error(attempts: Sequence[DeliveryAttempt]) -> str | None:
    """Return the error of the most recent failed attempt, if any."""
    for attempt in reversed(attempts):
        if attempt.error:
            return attempt.error
    return None
