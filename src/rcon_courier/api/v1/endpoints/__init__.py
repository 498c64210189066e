# src/rcon_courier/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .delivery import router as delivery_router
from .presence import router as presence_router
from .system import router as system_router

__all__ = [
    "delivery_router",
    "presence_router",
    "system_router",
]
