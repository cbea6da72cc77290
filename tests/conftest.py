"""Pytest configuration and fixtures."""

import itertools
import os

import pytest

# Keep a developer's .env / shell from leaking into test settings
for name in list(os.environ):
    if name.startswith("NOTES_"):
        del os.environ[name]

from notes_site.backend.clients import MemoryClient, SqliteClient
from notes_site.backend.config import Settings, StoreConfig, reset_settings
from notes_site.backend.domain import Account, Session
from notes_site.backend.keys import KeySchema
from notes_site.backend.services import NotesService, notes_store
from notes_site.backend.store import ResourceStore


@pytest.fixture(autouse=True)
def fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def memory_client():
    return MemoryClient()


@pytest.fixture
def sqlite_client(tmp_path):
    return SqliteClient(str(tmp_path / "notes.db"))


@pytest.fixture
def store_config(memory_client):
    return StoreConfig(namespace="notes-site", environment="testing", client=memory_client)


@pytest.fixture
def notes(store_config):
    """Notes table in the testing environment."""
    return notes_store(store_config)


@pytest.fixture
def accounts(store_config):
    return ResourceStore(store_config, "accounts", KeySchema(partition="accountID"))


@pytest.fixture
def notes_service(notes):
    """Clock ticks one second per new note, so keys are generate(1000), generate(2000), ..."""
    ticks = itertools.count(1)
    return NotesService(notes, clock=lambda: next(ticks))


@pytest.fixture
def signed_in():
    return Session(Account("a1"))


@pytest.fixture
def anonymous():
    return Session()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        environment="testing",
        storage_backend="memory",
        sqlite_path=str(tmp_path / "notes.db"),
        log_format="console",
        _env_file=None,
    )


@pytest.fixture
def api_client(test_settings):
    """FastAPI test client with an in-memory store."""
    from fastapi.testclient import TestClient

    from notes_site.backend.main import create_app

    with TestClient(create_app(test_settings), follow_redirects=False) as client:
        yield client


@pytest.fixture
def auth_headers(api_client):
    resp = api_client.post("/login", json={"accountID": "a1"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}
