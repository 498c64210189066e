"""Candidate server selection for product deliveries."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from rcon_courier.models import Product, ProductRconServer, RconServer

__all__ = ["ServerRepository"]


class ServerRepository:
    """Resolves which RCON servers may deliver a product, in priority order."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def assigned_server_ids(self, product_id: str) -> list[str]:
        """Return ids of servers explicitly assigned to the product."""
        result = self.session.execute(
            select(ProductRconServer.rcon_server_id).where(
                ProductRconServer.product_id == product_id
            )
        )
        return list(result.scalars())

    def candidates_for(self, product: Product) -> list[RconServer]:
        """Return enabled servers for the product's mode, lowest priority first.

        Explicit assignments restrict the set; with none, every enabled server
        of the mode is eligible. An empty list means no eligible servers.
        """
        stmt = select(RconServer).where(
            RconServer.enabled.is_(True),
            RconServer.mode == product.mode,
        )
        assigned = self.assigned_server_ids(product.id)
        if assigned:
            stmt = stmt.where(RconServer.id.in_(assigned))
        stmt = stmt.order_by(RconServer.priority.asc(), RconServer.name.asc())
        return list(self.session.execute(stmt).scalars())
