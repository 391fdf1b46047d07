# backend/tests/conftest.py
import os

import pytest
import pytest_asyncio

# Минимальные env, чтобы Settings() собрался при импорте intent_coordinator
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from intent_coordinator.db.session import create_all, make_engine, make_sessionmaker  # noqa: E402
from intent_coordinator.engine.coordinator import IntentCoordinator  # noqa: E402
from intent_coordinator.repos.intent_store import IntentStore  # noqa: E402

from helpers import FakeBridge, FakeGateway, RecordingSleep  # noqa: E402


@pytest_asyncio.fixture
async def store(tmp_path):
    """Fresh file-backed SQLite store per test."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await create_all(engine)
    yield IntentStore(make_sessionmaker(engine))
    await engine.dispose()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def coordinator(store, gateway, bridge, sleep):
    c = IntentCoordinator(store, gateway, bridge, sleep=sleep)  # type: ignore[arg-type]
    yield c
    await c.close()
