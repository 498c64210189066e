# src/rcon_courier/models/server.py
"""SQLAlchemy models for remote RCON servers and product assignments."""

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rcon_courier.db.session import Base


class RconServer(Base):
    """A configured RCON target.

    The authentication secret is deliberately absent; it lives in the
    credential store keyed by server id or name.
    """

    __tablename__ = "rcon_server"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    host: Mapped[str] = mapped_column(Text, nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=25575)
    mode: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Lower executes first.
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ProductRconServer(Base):
    """Explicit eligibility of a server for one product."""

    __tablename__ = "product_rcon_server"
    __table_args__ = (
        UniqueConstraint("product_id", "rcon_server_id", name="uq_product_rcon_server"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("product.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rcon_server_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("rcon_server.id", ondelete="CASCADE"),
        nullable=False,
    )
