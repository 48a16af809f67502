"""
Shared pytest fixtures for Voice Notes tests.

This module provides:
- Controllable clocks for token expiry and note timestamps
- Settings, token service and an in-memory note store
- A FastAPI test client wired to stub provider collaborators
"""

import datetime as dt
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.auth import TokenService
from api.config import Settings
from api_server import create_app
from src.llm.note_taker import NoteTaker
from src.storage.notes import NoteStore
from src.transcription.engine import DashScopeTranscriber

ADMIN_PASSWORD = "secret123"
SIGNING_KEY = "a" * 64
START_MILLIS = 1_760_000_000_000
DAY_MILLIS = 24 * 60 * 60 * 1000


class FakeClock:
    """Epoch-millis clock that only moves when told to."""

    def __init__(self, now: int = START_MILLIS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


class FakeDateTimeClock:
    """Naive UTC datetime clock for the note store."""

    def __init__(self, now: dt.datetime = dt.datetime(2026, 10, 19, 9, 30)):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += dt.timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def note_clock():
    return FakeDateTimeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        admin_password=ADMIN_PASSWORD,
        token_secret=SIGNING_KEY,
        static_dir=str(tmp_path / "missing-static"),
        database_url="sqlite://",
    )


@pytest.fixture
def token_service(clock):
    return TokenService(
        signing_key=SIGNING_KEY,
        admin_password=ADMIN_PASSWORD,
        ttl_millis=30 * DAY_MILLIS,
        clock=clock,
    )


@pytest.fixture
def note_store(note_clock):
    store = NoteStore("sqlite://", clock=note_clock)
    yield store
    store.close()


@pytest.fixture
def transcriber():
    return MagicMock(spec=DashScopeTranscriber)


@pytest.fixture
def note_taker():
    return MagicMock(spec=NoteTaker)


@pytest.fixture
def app(settings, token_service, note_store, transcriber, note_taker):
    return create_app(
        settings=settings,
        token_service=token_service,
        note_store=note_store,
        transcriber=transcriber,
        note_taker=note_taker,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def token(client):
    response = client.post("/api/login", json={"password": ADMIN_PASSWORD})
    assert response.status_code == 200
    return response.json()["token"]


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}
