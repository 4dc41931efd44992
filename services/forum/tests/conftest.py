"""Shared fixtures for the forum service tests."""

from __future__ import annotations

from typing import Any, AsyncIterator, List, Tuple

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from packages.common.config import Settings
from services.forum.app import create_app
from services.forum.hub import BroadcastHub
from services.forum.repo import SqlForumStore
from services.forum.store import MemoryForumStore

_ENV_VARS = ("ENV", "DATABASE_URL", "STORAGE_BACKEND", "STORAGE_FALLBACK", "FRONTEND_ORIGINS", "WS_QUEUE_SIZE")


class RecordingHub:
    """Broadcaster double that keeps every event it is handed."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    async def broadcast(self, event: str, payload: Any) -> None:
        self.events.append((event, payload))

    async def close(self) -> None:
        return None

    def named(self, event: str) -> List[Any]:
        return [payload for name, payload in self.events if name == event]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, ENV="dev")


@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncIterator[SqlForumStore]:
    store = SqlForumStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'forum.db'}")
    await store.init_db()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, tmp_path) -> AsyncIterator[Any]:
    """Every store contract test runs once per backend."""
    if request.param == "memory":
        yield MemoryForumStore()
        return
    sql = SqlForumStore.from_url(f"sqlite+aiosqlite:///{tmp_path / 'contract.db'}")
    await sql.init_db()
    yield sql
    await sql.close()


@pytest.fixture
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture
def app(settings: Settings, hub: RecordingHub):
    return create_app(settings, store=MemoryForumStore(), hub=hub)


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
