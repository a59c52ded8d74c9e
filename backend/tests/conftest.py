import os
import sys
import tempfile
from pathlib import Path

import pytest

# Add backend (1 level up from tests/) to sys.path so tests can import 'interpreter'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

# The module-level engine is created at import time; point it at SQLite so
# importing the app never needs the Postgres driver or server.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{Path(tempfile.gettempdir()) / 'interpreter_tests.db'}",
)
os.environ.setdefault("WEBHOOK_URL", "")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import interpreter.models.database as database_module
from interpreter.models.database import Base as DBBase
from interpreter.schemas.websocket_events import LanguageConfig

from tests.helpers import (
    FakeClientChannel,
    FakeUpstreamChannel,
    InMemoryConversationStore,
    ScriptedConnector,
    make_dependencies,
)


@pytest.fixture
async def async_db(tmp_path, monkeypatch):
    """
    Bind the app's database module to a fresh SQLite file for one test.

    Yields the session factory.
    """
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    test_async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(DBBase.metadata.create_all)

    monkeypatch.setattr(database_module, "engine", test_engine)
    monkeypatch.setattr(database_module, "AsyncSessionLocal", test_async_session)
    yield test_async_session
    await test_engine.dispose()


@pytest.fixture
def language_config():
    return LanguageConfig(doctorLanguage="english", patientLanguage="spanish")


@pytest.fixture
def client_channel():
    return FakeClientChannel()


@pytest.fixture
def upstream():
    return FakeUpstreamChannel()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def deps(upstream, store):
    return make_dependencies(connector=ScriptedConnector(upstream), store=store)
