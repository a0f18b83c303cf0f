"""Shared pytest setup: a fresh SQLite schema per test and the API test client."""

import os

os.environ["ENV"] = "test"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.db import Base, build_engine, db_manager, get_db

pytest_plugins = [
    "tests.fixtures.messaging_fixtures",
    "tests.fixtures.moderation_fixtures",
]


@pytest.fixture(scope="function")
def engine(tmp_path):
    """File-backed SQLite so worker threads can share the database."""
    engine = build_engine(f"sqlite:///{tmp_path / 'parley.db'}")
    Base.metadata.create_all(engine)
    db_manager.configure(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db, gateway):
    """Client with db and gateway overrides; scans and exports are only recorded."""
    from app.config import get_settings
    from app.main import create_app
    from app.routers.utils.dependencies import get_gateway

    app = create_app(testing=True)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: gateway.settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
