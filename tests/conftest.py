import os

os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
from fastapi.testclient import TestClient

from ritual_engine.api.auth import create_access_token
from ritual_engine.config import settings
from ritual_engine.db import Database
from ritual_engine.main import create_app
from ritual_engine.services import (
    AnalyticsAggregator,
    CompletionRecorder,
    RitualService,
    TemplateService,
)

START = datetime(2024, 3, 4, 9, 0, 0)  # a Monday


class FakeClock:
    """Settable clock handed to services in place of utcnow."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'rituals.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def rituals(database, clock) -> RitualService:
    return RitualService(database, clock=clock)


@pytest.fixture
def recorder(database, clock) -> CompletionRecorder:
    return CompletionRecorder(database, clock=clock)


@pytest.fixture
def analytics(database, clock) -> AnalyticsAggregator:
    return AnalyticsAggregator(database, clock=clock)


@pytest.fixture
def templates(database, clock) -> TemplateService:
    return TemplateService(database, clock=clock)


@pytest.fixture
def client(tmp_path, clock):
    app_settings = settings.model_copy(
        update={"env": "test", "db_url": f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"}
    )
    with TestClient(create_app(app_settings, clock=clock)) as c:
        yield c


@pytest.fixture
def auth_headers():
    def make(user_id: str = "alice") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return make


def ritual_payload(**overrides) -> dict:
    payload = {
        "name": "Morning pages",
        "category": "morning",
        "type": "routine",
        "frequency": "daily",
        "steps": [
            {"name": "Make coffee", "order": 0},
            {"name": "Write three pages", "order": 1, "duration_minutes": 25},
        ],
    }
    payload.update(overrides)
    return payload
