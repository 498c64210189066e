# src/rcon_courier/api/v1/endpoints/delivery.py
"""Order delivery endpoints for the RCON Courier API."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import select

from rcon_courier.api.v1.dependencies import RconClientDep, SessionDep
from rcon_courier.models import DeliveryQueue
from rcon_courier.schemas.delivery import (
    DeliveryAttemptResponse,
    DeliveryRequest,
    DeliveryResponse,
    QueueEntryResponse,
)
from rcon_courier.services.delivery import (
    DeliveryService,
    NoServersAvailableError,
    OrderNotFoundError,
    PaymentNotCompletedError,
)

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.post("", response_model=DeliveryResponse)
async def deliver_order(
    request: DeliveryRequest,
    db: SessionDep,
    client: RconClientDep,
) -> DeliveryResponse:
    """Deliver a paid order's commands to its game server.

    Args:
        request: Order identifier and delivery mode
        db: Database session
        client: RCON client bound to the configured secrets

    Returns:
        The final delivery status with one log item per command attempt

    Raises:
        HTTPException: 404 if the order is unknown, 400 if it is unpaid and
            503 if no server is eligible for its product
    """
    service = DeliveryService(db, client)
    try:
        result = await service.deliver(request.order_id, mode=request.action)
    except OrderNotFoundError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        ) from err
    except PaymentNotCompletedError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment not completed",
        ) from err
    except NoServersAvailableError as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No RCON servers available",
        ) from err

    return DeliveryResponse(
        order_id=result.order_id,
        status=result.status,
        success=result.success,
        queued=result.queued,
        skipped=result.skipped,
        message=result.message,
        logs=[DeliveryAttemptResponse(**attempt.as_dict()) for attempt in result.logs],
    )


@router.get("/queue", response_model=list[QueueEntryResponse])
async def list_queue(
    db: SessionDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[QueueEntryResponse]:
    """List delivery queue entries for operator tooling."""
    stmt = select(DeliveryQueue)
    if status_filter:
        stmt = stmt.where(DeliveryQueue.status == status_filter)
    stmt = stmt.order_by(DeliveryQueue.created_at.desc()).limit(limit)
    entries = db.execute(stmt).scalars()
    return [QueueEntryResponse.model_validate(entry) for entry in entries]
