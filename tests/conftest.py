# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")

from rcon_courier.api.v1.dependencies import get_rcon_client_dep
from rcon_courier.db.session import Base
from rcon_courier.db.session import get_db as app_get_session
from rcon_courier.main import app as fastapi_app
from rcon_courier.models import Order, Product, RconServer
from tests.factories import FakeRconClient, make_order, make_product, make_server

TEST_DB_URL = "sqlite://"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Services commit, so wipe every table between tests.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def rcon_credentials() -> dict[str, str]:
    return {"survival-1": "secret-1", "survival-2": "secret-2", "lifesteal-1": "secret-3"}


@pytest.fixture()
def fake_rcon(rcon_credentials: dict[str, str]) -> FakeRconClient:
    return FakeRconClient(rcon_credentials)


@pytest.fixture()
def client(app: FastAPI, fake_rcon: FakeRconClient) -> Iterator[TestClient]:
    app.dependency_overrides[get_rcon_client_dep] = lambda: fake_rcon
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_rcon_client_dep, None)


@pytest.fixture()
def survival_servers(db_session: Session) -> list[RconServer]:
    """Two survival servers, survival-1 preferred."""
    servers = [
        make_server(db_session, "survival-1", priority=1),
        make_server(db_session, "survival-2", priority=2),
    ]
    db_session.commit()
    return servers


@pytest.fixture()
def vip_product(db_session: Session) -> Product:
    product = make_product(
        db_session,
        ["lp user {player} parent add vip", "give {player} diamond {quantity}"],
    )
    db_session.commit()
    return product


@pytest.fixture()
def paid_order(db_session: Session, vip_product: Product) -> Order:
    return make_order(db_session, vip_product, quantity=3)
