"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app module is
imported, so the settings and the engine pick them up.
"""

import os
import tempfile
from pathlib import Path

import pytest

TEST_DB_PATH = Path(tempfile.gettempdir()) / f"message_board_test_{os.getpid()}.db"

# Always overridden: the client fixture drops every table after each test
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["SEED_SAMPLE_DATA"] = "false"
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from app.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402
from app.storage import SessionLocal, Base, engine  # noqa: E402


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    assert engine.url.database == str(TEST_DB_PATH), "tests must run against the throwaway database"
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """A storage session against the same fresh database as `client`."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def create_message(client, content: str, nickname: str = None, headers: dict = None) -> dict:
    """Helper to create a message through the API and return its record."""
    body = {"content": content}
    if nickname is not None:
        body["nickname"] = nickname
    response = client.post("/api/messages", json=body, headers=headers or {})
    assert response.status_code == 201, response.text
    return response.json()["data"]
