# src/rcon_courier/scripts/migrate.py
"""Bring the courier schema up to date.

By default this runs Alembic to ``head``. ``--create-all`` skips Alembic and
creates the tables straight from the ORM metadata, which is handy for
throwaway SQLite databases.
"""

from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config

from rcon_courier.core.settings import settings
from rcon_courier.db.session import create_tables, drop_tables

MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "migrations"


def alembic_config(url: str | None = None) -> Config:
    """Return an Alembic config pointed at the bundled migrations."""
    cfg = Config(str(MIGRATIONS_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    cfg.set_main_option("sqlalchemy.url", url or settings.database_url_sync)
    return cfg


def run_upgrade_head(url: str | None = None) -> None:
    command.upgrade(alembic_config(url), "head")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Create or migrate the courier database")
    parser.add_argument(
        "--create-all",
        action="store_true",
        help="Create tables from the ORM models instead of running migrations.",
    )
    parser.add_argument(
        "--drop-all",
        action="store_true",
        help="Drop every courier table first (destructive).",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Override database URL for migrations (defaults to settings)",
    )
    args = parser.parse_args(argv)

    if args.drop_all:
        drop_tables()
    if args.create_all:
        create_tables()
        print("[migrate] created tables from models")
        return
    run_upgrade_head(args.url)
    print("[migrate] upgraded to head")


if __name__ == "__main__":
    main()
