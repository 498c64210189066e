# tests/services/test_delivery_service.py
"""Tests for the delivery state machine."""

from __future__ import annotations

import asyncio
import socket
from datetime import UTC, datetime

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from rcon_courier.models import DeliveryLog, DeliveryQueue, Order, RconServer
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
    PAYMENT_STATUS_PENDING,
)
from rcon_courier.repositories.player_repo import PlayerStatusRepository
from rcon_courier.services.delivery import (
    MISSING_CREDENTIAL_ERROR,
    QUEUED_REASON,
    DeliveryService,
    NoServersAvailableError,
    OrderNotFoundError,
    PaymentNotCompletedError,
)
from rcon_courier.services.delivery_queue import DeliveryQueueManager
from rcon_courier.services.rcon_client import RconClient, RconConnectionError
from tests.factories import FakeRconClient, make_order, make_product

ALL_DOWN = {
    "survival-1": RconConnectionError("Could not connect"),
    "survival-2": RconConnectionError("Could not connect"),
}


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _service(db: Session, client: FakeRconClient, **kwargs) -> DeliveryService:
    kwargs.setdefault("sleep", RecordingSleep())
    return DeliveryService(db, client, **kwargs)


def _log_rows(db: Session, order: Order) -> list[DeliveryLog]:
    result = db.execute(
        select(DeliveryLog).where(DeliveryLog.order_id == order.id).order_by(DeliveryLog.created_at)
    )
    return list(result.scalars())


def _queue_rows(db: Session, order: Order) -> list[DeliveryQueue]:
    result = db.execute(
        select(DeliveryQueue)
        .where(DeliveryQueue.order_id == order.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars())


@pytest.mark.asyncio
async def test_delivers_commands_in_order_on_first_server(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    paid_order: Order,
) -> None:
    result = await _service(db_session, fake_rcon).deliver(paid_order.id)

    assert result.success is True
    assert result.status == DELIVERY_STATUS_DELIVERED
    assert fake_rcon.commands_for("survival-1") == [
        "lp user Steve parent add vip",
        "give Steve diamond 3",
    ]
    assert fake_rcon.commands_for("survival-2") == []
    assert [attempt.server for attempt in result.logs] == ["survival-1", "survival-1"]

    rows = _log_rows(db_session, paid_order)
    assert [row.status for row in rows] == [LOG_STATUS_SUCCESS, LOG_STATUS_SUCCESS]
    assert rows[1].response == "ok: give Steve diamond 3"
    assert all(row.execution_time_ms is not None for row in rows)

    db_session.refresh(paid_order)
    assert paid_order.delivery_status == DELIVERY_STATUS_DELIVERED
    assert len(paid_order.delivery_log) == 2


@pytest.mark.asyncio
async def test_fails_over_to_next_server(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = FakeRconClient(
        rcon_credentials, failures={"survival-1": RconConnectionError("Could not connect")}
    )

    result = await _service(db_session, client).deliver(paid_order.id)

    assert result.status == DELIVERY_STATUS_DELIVERED
    assert [(a.server, a.success) for a in result.logs] == [
        ("survival-1", False),
        ("survival-2", True),
        ("survival-2", True),
    ]
    assert result.logs[0].error == "Could not connect"
    assert len(_log_rows(db_session, paid_order)) == 3


@pytest.mark.asyncio
async def test_failed_script_restarts_from_first_command_on_next_server(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = FakeRconClient(
        rcon_credentials,
        failures={"survival-1": RconConnectionError("reset")},
        fail_on="give",
    )

    result = await _service(db_session, client).deliver(paid_order.id)

    assert result.success is True
    assert client.commands_for("survival-2") == [
        "lp user Steve parent add vip",
        "give Steve diamond 3",
    ]
    rows = _log_rows(db_session, paid_order)
    assert [row.status for row in rows] == [
        LOG_STATUS_SUCCESS,
        LOG_STATUS_FAILED,
        LOG_STATUS_SUCCESS,
        LOG_STATUS_SUCCESS,
    ]


@pytest.mark.asyncio
async def test_missing_credential_logged_once_and_server_skipped(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
) -> None:
    client = FakeRconClient({"survival-2": "secret-2"})

    result = await _service(db_session, client).deliver(paid_order.id)

    assert result.success is True
    assert client.commands_for("survival-1") == []
    first = result.logs[0]
    assert (first.server, first.command, first.error) == (
        "survival-1",
        None,
        MISSING_CREDENTIAL_ERROR,
    )
    skipped_rows = [
        row for row in _log_rows(db_session, paid_order)
        if row.rcon_server_id == survival_servers[0].id
    ]
    assert len(skipped_rows) == 1
    assert skipped_rows[0].command_text is None


@pytest.mark.asyncio
async def test_product_without_commands_is_delivered_without_rcon(
    db_session: Session,
    fake_rcon: FakeRconClient,
) -> None:
    product = make_product(db_session, [])
    order = make_order(db_session, product)

    result = await _service(db_session, fake_rcon).deliver(order.id)

    assert result.status == DELIVERY_STATUS_DELIVERED
    assert result.logs == []
    assert fake_rcon.sent == []
    db_session.refresh(order)
    assert order.delivery_log == []


@pytest.mark.asyncio
async def test_disabled_commands_are_skipped_and_delays_applied(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
) -> None:
    product = make_product(
        db_session,
        ["say one", "say two", "say three"],
        delays_ms=[0, 0, 1500],
        disabled=[1],
    )
    order = make_order(db_session, product)
    sleep = RecordingSleep()

    await _service(db_session, fake_rcon, sleep=sleep).deliver(order.id)

    assert fake_rcon.commands_for("survival-1") == ["say one", "say three"]
    assert sleep.calls == [1.5]


@pytest.mark.asyncio
async def test_gift_is_delivered_to_recipient(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, ign="Buyer", gift_recipient="Friend")

    await _service(db_session, fake_rcon).deliver(order.id)

    assert fake_rcon.commands_for("survival-1")[0] == "lp user Friend parent add vip"


@pytest.mark.asyncio
async def test_offline_player_is_queued_and_requeue_increments(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = FakeRconClient(rcon_credentials, failures=dict(ALL_DOWN))
    service = _service(db_session, client)

    first = await service.deliver(paid_order.id)

    assert first.success is False
    assert first.queued is True
    assert first.status == DELIVERY_STATUS_QUEUED
    entries = _queue_rows(db_session, paid_order)
    assert len(entries) == 1
    assert entries[0].status == QUEUE_STATUS_QUEUED
    assert entries[0].attempt_count == 1
    assert entries[0].error_message == QUEUED_REASON
    assert entries[0].minecraft_ign == "Steve"

    second = await service.deliver(paid_order.id)

    assert second.queued is True
    entries = _queue_rows(db_session, paid_order)
    assert len(entries) == 1
    assert entries[0].attempt_count == 2
    assert entries[0].error_message == "Could not connect"


@pytest.mark.asyncio
async def test_online_player_failure_marks_order_failed(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    PlayerStatusRepository(db_session).mark_online(
        "Steve", "survival-1", datetime(2026, 1, 1, tzinfo=UTC)
    )
    db_session.commit()
    client = FakeRconClient(rcon_credentials, failures=dict(ALL_DOWN))

    result = await _service(db_session, client).deliver(paid_order.id)

    assert result.status == DELIVERY_STATUS_FAILED
    assert result.queued is False
    assert len(result.logs) == 2
    assert _queue_rows(db_session, paid_order) == []


@pytest.mark.asyncio
async def test_queue_cap_fails_order(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = FakeRconClient(rcon_credentials, failures=dict(ALL_DOWN))
    queue = DeliveryQueueManager(db_session, max_attempts=2)
    service = _service(db_session, client, queue=queue)

    assert (await service.deliver(paid_order.id)).status == DELIVERY_STATUS_QUEUED
    result = await service.deliver(paid_order.id)

    assert result.status == DELIVERY_STATUS_FAILED
    assert result.queued is False
    entry = _queue_rows(db_session, paid_order)[0]
    assert entry.status == QUEUE_STATUS_FAILED
    assert entry.attempt_count == 2


@pytest.mark.asyncio
async def test_success_after_queue_resolves_entry(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = FakeRconClient(rcon_credentials, failures=dict(ALL_DOWN))
    service = _service(db_session, client)
    await service.deliver(paid_order.id)

    client.failures.clear()
    result = await service.deliver(paid_order.id)

    assert result.status == DELIVERY_STATUS_DELIVERED
    assert _queue_rows(db_session, paid_order)[0].status == QUEUE_STATUS_DELIVERED


@pytest.mark.asyncio
async def test_unpaid_order_is_rejected(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, payment_status=PAYMENT_STATUS_PENDING)

    with pytest.raises(PaymentNotCompletedError):
        await _service(db_session, fake_rcon).deliver(order.id)

    db_session.refresh(order)
    assert order.delivery_status == DELIVERY_STATUS_PENDING
    assert fake_rcon.sent == []


@pytest.mark.asyncio
async def test_unknown_order_raises(db_session: Session, fake_rcon: FakeRconClient) -> None:
    with pytest.raises(OrderNotFoundError):
        await _service(db_session, fake_rcon).deliver("missing-order")


@pytest.mark.asyncio
async def test_no_servers_fails_order(
    db_session: Session,
    fake_rcon: FakeRconClient,
    paid_order: Order,
) -> None:
    with pytest.raises(NoServersAvailableError):
        await _service(db_session, fake_rcon).deliver(paid_order.id)

    db_session.refresh(paid_order)
    assert paid_order.delivery_status == DELIVERY_STATUS_FAILED


@pytest.mark.asyncio
async def test_no_servers_leaves_in_flight_queue_entry_alone(
    db_session: Session,
    fake_rcon: FakeRconClient,
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, delivery_status=DELIVERY_STATUS_PROCESSING)
    DeliveryQueueManager(db_session).enqueue(order, "Steve", QUEUED_REASON)

    with pytest.raises(NoServersAvailableError):
        await _service(db_session, fake_rcon).deliver(order.id)

    db_session.refresh(order)
    assert order.delivery_status == DELIVERY_STATUS_PROCESSING
    [entry] = _queue_rows(db_session, order)
    assert entry.status == QUEUE_STATUS_QUEUED
    assert entry.error_message == QUEUED_REASON


@pytest.mark.asyncio
async def test_order_in_progress_is_skipped(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, delivery_status=DELIVERY_STATUS_PROCESSING)

    result = await _service(db_session, fake_rcon).deliver(order.id)

    assert result.skipped is True
    assert result.status == DELIVERY_STATUS_PROCESSING
    assert fake_rcon.sent == []


@pytest.mark.asyncio
async def test_delivered_order_is_not_redelivered(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, delivery_status=DELIVERY_STATUS_DELIVERED)

    result = await _service(db_session, fake_rcon).deliver(order.id, mode="retry")

    assert result.success is True
    assert fake_rcon.sent == []


@pytest.mark.asyncio
async def test_failed_order_reopened_only_by_retry(
    db_session: Session,
    fake_rcon: FakeRconClient,
    survival_servers: list[RconServer],
    vip_product,
) -> None:
    order = make_order(db_session, vip_product, delivery_status=DELIVERY_STATUS_FAILED)
    service = _service(db_session, fake_rcon)

    skipped = await service.deliver(order.id, mode="deliver")
    assert skipped.skipped is True
    assert fake_rcon.sent == []

    retried = await service.deliver(order.id, mode="retry")
    assert retried.status == DELIVERY_STATUS_DELIVERED


@pytest.mark.asyncio
async def test_unknown_mode_rejected(db_session: Session, fake_rcon: FakeRconClient) -> None:
    with pytest.raises(ValueError):
        await _service(db_session, fake_rcon).deliver("any", mode="force")  # type: ignore[arg-type]


class SlowFailingClient(FakeRconClient):
    async def execute(self, server: RconServer, command: str) -> str:
        self.sent.append((server.name, command))
        await asyncio.sleep(0.05)
        raise RconConnectionError("timed out")


@pytest.mark.asyncio
async def test_deadline_stops_trying_further_servers(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    client = SlowFailingClient(rcon_credentials)

    result = await _service(db_session, client, deadline_seconds=0.01).deliver(paid_order.id)

    assert client.commands_for("survival-2") == []
    assert result.status == DELIVERY_STATUS_QUEUED


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_misconfigured_server_fails_over_to_next(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    survival_servers[0].port = 70000
    survival_servers[1].port = _unused_port()
    db_session.commit()
    client = RconClient(rcon_credentials, timeout_seconds=1.0, max_packet_size=4096)

    result = await _service(db_session, client).deliver(paid_order.id)

    assert [attempt.server for attempt in result.logs] == ["survival-1", "survival-2"]
    assert all(not attempt.success for attempt in result.logs)
    assert result.status == DELIVERY_STATUS_QUEUED
    rows = _log_rows(db_session, paid_order)
    assert [row.status for row in rows] == [LOG_STATUS_FAILED, LOG_STATUS_FAILED]
    assert "70000" in rows[0].error_message


class BrokenClient(FakeRconClient):
    """Raises a non-RCON error once a command containing ``give`` is sent."""

    async def execute(self, server: RconServer, command: str) -> str:
        self.sent.append((server.name, command))
        if "give" in command:
            raise LookupError("unexpected failure")
        return f"ok: {command}"


@pytest.mark.asyncio
async def test_unexpected_client_error_fails_order_instead_of_sticking(
    db_session: Session,
    survival_servers: list[RconServer],
    paid_order: Order,
    rcon_credentials: dict[str, str],
) -> None:
    paid_order.delivery_status = DELIVERY_STATUS_QUEUED
    db_session.commit()
    DeliveryQueueManager(db_session).enqueue(paid_order, "Steve", QUEUED_REASON)

    with pytest.raises(LookupError):
        await _service(db_session, BrokenClient(rcon_credentials)).deliver(paid_order.id)

    db_session.refresh(paid_order)
    assert paid_order.delivery_status == DELIVERY_STATUS_FAILED
    assert [entry["success"] for entry in paid_order.delivery_log] == [True]
    [entry] = _queue_rows(db_session, paid_order)
    assert entry.status == QUEUE_STATUS_FAILED
    assert "unexpected failure" in entry.error_message

    retried = await _service(db_session, FakeRconClient(rcon_credentials)).deliver(
        paid_order.id, mode="retry"
    )
    assert retried.status == DELIVERY_STATUS_DELIVERED
