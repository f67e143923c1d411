"""Pytest configuration and shared fixtures."""

import os
import tempfile
import uuid
from collections.abc import Generator
from unittest.mock import patch

# Configure the app for an isolated SQLite database before anything imports settings
_db_fd, _db_path = tempfile.mkstemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite:///{_db_path}"
os.environ["ENV"] = "test"
os.environ["REDIS_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app import models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.db.engine import engine  # noqa: E402
from app.db.session import SessionLocal  # noqa: E402
from app.main import create_app  # noqa: E402
from app.schemas.case_graph import CaseGraph  # noqa: E402
from tests.helpers.fake_redis import FakeRedis  # noqa: E402
from tests.helpers.seed import create_two_step_case  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    os.close(_db_fd)
    if os.path.exists(_db_path):
        os.unlink(_db_path)


@pytest.fixture
def fresh_schema() -> Generator[None, None, None]:
    """Empty tables for every test that touches the database."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function")
def db(fresh_schema) -> Generator[Session, None, None]:
    """Database session; application code commits freely against the throwaway schema."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_redis() -> Generator[FakeRedis, None, None]:
    """Route the cache and lock helpers to an in-memory Redis."""
    client = FakeRedis()
    with patch("app.cache.redis.get_redis_client", return_value=client), patch(
        "app.core.redis_lock.get_redis_client", return_value=client
    ):
        yield client


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def two_step_case(db: Session) -> CaseGraph:
    return create_two_step_case(db)


@pytest.fixture
def client(fresh_schema) -> TestClient:
    return TestClient(create_app())
