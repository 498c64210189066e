# src/rcon_courier/models/order.py
"""SQLAlchemy model for paid orders awaiting in-game delivery."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rcon_courier.db.session import Base
from rcon_courier.db.time import utcnow

from .product import Product

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"

DELIVERY_STATUS_PENDING = "pending"
DELIVERY_STATUS_PROCESSING = "processing"
DELIVERY_STATUS_QUEUED = "queued"
DELIVERY_STATUS_DELIVERED = "delivered"
DELIVERY_STATUS_FAILED = "failed"


class Order(Base):
    """A purchase created by the storefront once payment is confirmed.

    The delivery engine only mutates ``delivery_status``, ``delivery_log`` and
    ``updated_at``; every other column belongs to the order-processing side.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("product.id"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    minecraft_ign: Mapped[str] = mapped_column(Text, nullable=False)
    is_gift: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gift_recipient_ign: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PAYMENT_STATUS_PENDING
    )
    # pending -> processing -> delivered | failed | queued; queued -> processing on retry.
    delivery_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DELIVERY_STATUS_PENDING, index=True
    )
    # Snapshot of the per-attempt results of the most recent delivery run.
    delivery_log: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    product: Mapped[Product] = relationship("Product")

    @property
    def recipient_ign(self) -> str:
        """Return the username that receives the goods."""
        if self.is_gift and self.gift_recipient_ign:
            return self.gift_recipient_ign
        return self.minecraft_ign
