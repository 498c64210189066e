# src/rcon_courier/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import delivery_router, presence_router, system_router

__all__ = [
    "delivery_router",
    "presence_router",
    "system_router",
]
