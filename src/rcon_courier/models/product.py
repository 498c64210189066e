# src/rcon_courier/models/product.py
"""SQLAlchemy models for products and their delivery scripts."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rcon_courier.db.session import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Product(Base):
    """Catalog entry as seen by the delivery engine.

    The storefront owns the full catalog; only the fields needed to route and
    render deliveries are mapped here.
    """

    __tablename__ = "product"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # Game-mode tag, e.g. 'survival' or 'lifesteal'.
    mode: Mapped[str] = mapped_column(String(32), nullable=False)

    commands: Mapped[list[DeliveryCommand]] = relationship(
        "DeliveryCommand",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="DeliveryCommand.order_index",
    )


class DeliveryCommand(Base):
    """One step of a product's delivery script."""

    __tablename__ = "delivery_command"
    __table_args__ = (
        UniqueConstraint("product_id", "order_index", name="uq_delivery_command_order"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("product.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Template text with placeholders such as {player} or {quantity}.
    command_text: Mapped[str] = mapped_column(Text, nullable=False)
    delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    product: Mapped[Product] = relationship("Product", back_populates="commands")
