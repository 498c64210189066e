# src/rcon_courier/schemas/presence.py
"""Presence listener Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PresenceEvent(BaseModel):
    """Join or leave event reported by the game-server plugin."""

    minecraft_ign: str = Field(..., min_length=1, max_length=64)
    server_name: str | None = None
    timestamp: datetime | None = None


class QueuedDeliveryResponse(BaseModel):
    order_id: str
    success: bool
    error: str | None = None


class JoinResponse(BaseModel):
    """Result of a join event, including any queued deliveries retried."""

    success: bool = True
    event: str = "join"
    player: str
    server: str | None = None
    deliveries_processed: int = 0
    delivery_results: list[QueuedDeliveryResponse] = Field(default_factory=list)


class LeaveResponse(BaseModel):
    success: bool = True
    event: str = "leave"
    player: str
