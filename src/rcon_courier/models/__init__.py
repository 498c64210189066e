# src/rcon_courier/models/__init__.py
"""SQLAlchemy models for the RCON Courier application."""

from .delivery import DeliveryLog, DeliveryQueue
from .order import Order
from .player_status import PlayerStatus
from .product import DeliveryCommand, Product
from .server import ProductRconServer, RconServer

__all__ = [
    "DeliveryLog", "DeliveryQueue",
    "Order",
    "PlayerStatus",
    "DeliveryCommand", "Product",
    "ProductRconServer", "RconServer",
]
