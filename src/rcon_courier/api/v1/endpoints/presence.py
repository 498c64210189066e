# src/rcon_courier/api/v1/endpoints/presence.py
"""Presence listener endpoints called by the game-server plugin."""

from __future__ import annotations

from fastapi import APIRouter

from rcon_courier.api.v1.dependencies import ListenerTokenDep, RconClientDep, SessionDep
from rcon_courier.schemas.presence import (
    JoinResponse,
    LeaveResponse,
    PresenceEvent,
    QueuedDeliveryResponse,
)
from rcon_courier.services.delivery import DeliveryService
from rcon_courier.services.presence import PresenceTracker

router = APIRouter(prefix="/presence", tags=["presence"], dependencies=[ListenerTokenDep])


@router.post("/join", response_model=JoinResponse)
async def player_join(event: PresenceEvent, db: SessionDep, client: RconClientDep) -> JoinResponse:
    """Record a join and retry the player's queued deliveries."""
    tracker = PresenceTracker(db, DeliveryService(db, client))
    result = await tracker.join(event.minecraft_ign, event.server_name, event.timestamp)
    return JoinResponse(
        player=result.player,
        server=result.server,
        deliveries_processed=result.deliveries_processed,
        delivery_results=[
            QueuedDeliveryResponse(**item.as_dict()) for item in result.delivery_results
        ],
    )


@router.post("/leave", response_model=LeaveResponse)
async def player_leave(event: PresenceEvent, db: SessionDep) -> LeaveResponse:
    """Record that a player left the network."""
    tracker = PresenceTracker(db)
    await tracker.leave(event.minecraft_ign, event.server_name, event.timestamp)
    return LeaveResponse(player=event.minecraft_ign)
