"""Data access helpers for player presence."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from rcon_courier.db.upsert import upsert
from rcon_courier.models import PlayerStatus

__all__ = ["PlayerStatusRepository"]


class PlayerStatusRepository:
    """Reads and upserts the single presence row kept per username."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get(self, minecraft_ign: str) -> PlayerStatus | None:
        """Return the presence row for a username, if one was ever recorded."""
        result = self.session.execute(
            select(PlayerStatus)
            .where(PlayerStatus.minecraft_ign == minecraft_ign)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    def is_online(self, minecraft_ign: str) -> bool:
        """Return True if the username's last event was a join.

        Usernames never seen by the listener count as offline.
        """
        status = self.get(minecraft_ign)
        return bool(status and status.online)

    def mark_online(self, minecraft_ign: str, server_name: str | None, at: datetime) -> None:
        upsert(
            self.session,
            PlayerStatus,
            {
                "minecraft_ign": minecraft_ign,
                "server_name": server_name,
                "online": True,
                "last_join_at": at,
                "updated_at": at,
            },
            conflict_columns=["minecraft_ign"],
            update_values={
                "server_name": server_name,
                "online": True,
                "last_join_at": at,
                "updated_at": at,
            },
        )

    def mark_offline(self, minecraft_ign: str, at: datetime) -> None:
        upsert(
            self.session,
            PlayerStatus,
            {
                "minecraft_ign": minecraft_ign,
                "server_name": None,
                "online": False,
                "last_leave_at": at,
                "updated_at": at,
            },
            conflict_columns=["minecraft_ign"],
            update_values={
                "server_name": None,
                "online": False,
                "last_leave_at": at,
                "updated_at": at,
            },
        )
