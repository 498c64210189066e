# src/rcon_courier/models/player_status.py
"""SQLAlchemy model for last known player presence."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rcon_courier.db.session import Base
from rcon_courier.db.time import utcnow


class PlayerStatus(Base):
    """Online/offline state of a username, one row per username."""

    __tablename__ = "player_status"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    minecraft_ign: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Free-text name reported by the game-server plugin; cleared on leave.
    server_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_join_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_leave_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
