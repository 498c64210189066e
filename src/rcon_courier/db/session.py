# src/rcon_courier/db/session.py
"""Engine and session factory for the courier database.

The storefront usually owns the schema in production (PostgreSQL); SQLite is
supported for local runs and tests.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from rcon_courier.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base for courier tables."""


# Model modules register their tables on Base.metadata at import time.
import rcon_courier.models  # noqa: E402,F401


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine for ``url``, relaxing SQLite's thread check."""
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Sessions are opened in FastAPI's threadpool and used on the event loop.
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)


engine = build_engine(settings.effective_database_url, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session and close it afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables() -> None:
    """Create every courier table that does not exist yet."""
    Base.metadata.create_all(bind=engine)


def drop_tables() -> None:
    """Drop every courier table."""
    Base.metadata.drop_all(bind=engine)
