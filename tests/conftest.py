import os

# Settings are read once at import; keep tests off Redis, Postgres and the generator
os.environ.setdefault("ROOM_STORE_BACKEND", "memory")
os.environ.setdefault("ARCHIVE_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CHALLENGE_SOURCE_API_KEY", "")
os.environ.setdefault("ENVIRONMENT", "development")

from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from codeduel.api.routes.duel import get_duel_archive, get_duel_engine
from codeduel.api.routes.practice import get_practice_service
from codeduel.db.database import Base
from codeduel.game_engine.duel.engine import DuelEngine
from codeduel.game_engine.practice import PracticeService
from codeduel.main import app
from codeduel.services.duel_archive import DuelArchive
from codeduel.services.room_store import InMemoryRoomStore
from tests.fakes import FakeChallenges, FakeExecutor, FakeJudge, RecordingEvents, accepted


@pytest.fixture
def room_store():
    return InMemoryRoomStore(ttl_seconds=3600)


@pytest.fixture
def fake_judge():
    return FakeJudge()


@pytest.fixture
def fake_challenges():
    return FakeChallenges()


@pytest.fixture
def events():
    return RecordingEvents()


@pytest_asyncio.fixture
async def engine_factory(room_store, fake_judge, fake_challenges, events):
    """Build duel engines wired to in-memory fakes; shuts them down afterwards."""
    engines: list[DuelEngine] = []

    def build(**overrides: Any) -> DuelEngine:
        options = {
            "store": room_store,
            "solution_judge": fake_judge,
            "challenges": fake_challenges,
            "events": events,
            "archive": None,
            "rematch_window": 10.0,
        }
        options.update(overrides)
        engine = DuelEngine(**options)
        engines.append(engine)
        return engine

    yield build

    for engine in engines:
        await engine.shutdown()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a test database engine."""
    # File-backed so each session gets its own connection (an in-memory
    # database shares one connection under StaticPool)
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def archive(session_factory) -> DuelArchive:
    return DuelArchive(session_factory)


@pytest.fixture
def api_engine(engine_factory) -> DuelEngine:
    return engine_factory()


@pytest.fixture
def api_practice() -> PracticeService:
    return PracticeService(
        executor=FakeExecutor({"": accepted("hello")}),
        challenges=FakeChallenges(),
    )


@pytest_asyncio.fixture
async def client(api_engine, api_practice, archive) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client backed by fakes."""
    app.dependency_overrides[get_duel_engine] = lambda: api_engine
    app.dependency_overrides[get_duel_archive] = lambda: archive
    app.dependency_overrides[get_practice_service] = lambda: api_practice

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
