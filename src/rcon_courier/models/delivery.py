# src/rcon_courier/models/delivery.py
"""Models for the delivery audit trail and the offline retry queue."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, SmallInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rcon_courier.db.session import Base
from rcon_courier.db.time import utcnow

LOG_STATUS_SUCCESS = "success"
LOG_STATUS_FAILED = "failed"

QUEUE_STATUS_PENDING = "pending"
QUEUE_STATUS_QUEUED = "queued"
QUEUE_STATUS_PROCESSING = "processing"
QUEUE_STATUS_DELIVERED = "delivered"
QUEUE_STATUS_FAILED = "failed"


class DeliveryLog(Base):
    """Append-only record of one command attempt against one server."""

    __tablename__ = "delivery_log"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rcon_server_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("rcon_server.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Null when no command was sent (e.g. missing credential).
    command_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    response: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class DeliveryQueue(Base):
    """Deferred delivery waiting for its recipient to come online.

    One row per order; writers go through an atomic upsert on ``order_id``.
    """

    __tablename__ = "delivery_queue"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    minecraft_ign: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QUEUE_STATUS_QUEUED, index=True
    )
    attempt_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=1)
    max_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=5)
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
