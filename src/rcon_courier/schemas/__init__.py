# src/rcon_courier/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .delivery import (
    DeliveryAttemptResponse,
    DeliveryRequest,
    DeliveryResponse,
    QueueEntryResponse,
)
from .presence import JoinResponse, LeaveResponse, PresenceEvent, QueuedDeliveryResponse

__all__ = [
    "DeliveryAttemptResponse", "DeliveryRequest", "DeliveryResponse", "QueueEntryResponse",
    "JoinResponse", "LeaveResponse", "PresenceEvent", "QueuedDeliveryResponse",
]
