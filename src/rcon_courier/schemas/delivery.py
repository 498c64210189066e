# src/rcon_courier/schemas/delivery.py
"""Delivery-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DeliveryRequest(BaseModel):
    """Schema for requesting delivery of a paid order."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId", min_length=1)
    action: Literal["deliver", "retry"] = Field(
        "deliver",
        description="'deliver' for normal processing, 'retry' for an operator retry",
    )


class DeliveryAttemptResponse(BaseModel):
    """One command attempt against one server."""

    server: str
    command: str | None = None
    success: bool
    response: str | None = None
    error: str | None = None


class DeliveryResponse(BaseModel):
    """Outcome of a delivery request."""

    order_id: str
    status: str
    success: bool
    queued: bool = False
    skipped: bool = False
    message: str | None = None
    logs: list[DeliveryAttemptResponse] = Field(default_factory=list)


class QueueEntryResponse(BaseModel):
    """Queue entry as exposed to operator tooling."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    minecraft_ign: str
    status: str
    attempt_count: int
    max_attempts: int
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    error_message: str | None = None
