"""
Shared fixtures for chatsync tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from chatsync.config import reset_config
from chatsync.models import Message, MessageRole, Session
from chatsync.persistence.backends.memory import MemoryMessageStore, MemorySessionStore
from chatsync.persistence.backends.sqlite import SQLiteDatabase
from chatsync.persistence.migrations.runner import PackagedMigrationSource, SchemaMigrator
from chatsync.persistence.repositories import SQLMessageRepository, SQLSessionRepository

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_session(index: int = 0, **overrides) -> Session:
    fields = dict(
        id=f"session-{index:03d}",
        name=f"Campaign {index}",
        creator_id=f"player-{index}",
        mcp_server_url="http://mcp.local:9000",
        websocket_key=f"ws-{index}",
        max_players=4,
        settings={"difficulty": "normal", "round": index},
        created_at=BASE_TIME + timedelta(minutes=index),
        updated_at=BASE_TIME + timedelta(minutes=index),
    )
    fields.update(overrides)
    return Session(**fields)


def make_messages(session_id: str, count: int, start: int = 0) -> list[Message]:
    roles = [MessageRole.USER, MessageRole.ASSISTANT]
    return [
        Message(
            id=f"{session_id}-msg-{i:05d}",
            session_id=session_id,
            role=roles[i % 2],
            content=f"message {i}",
            player_id="player-1" if i % 2 == 0 else None,
            created_at=BASE_TIME + timedelta(seconds=i),
        )
        for i in range(start, start + count)
    ]


@pytest.fixture(autouse=True)
def _reset_global_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fast_sessions():
    return MemorySessionStore()


@pytest.fixture
def fast_messages(fast_sessions):
    return MemoryMessageStore(fast_sessions)


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    """Connected SQLite database with the packaged schema applied."""
    db = SQLiteDatabase(tmp_path / "durable.db")
    await db.connect()
    await SchemaMigrator(db, PackagedMigrationSource("sqlite")).up()
    yield db
    await db.close()


@pytest.fixture
def durable_sessions(sqlite_db):
    return SQLSessionRepository(sqlite_db)


@pytest.fixture
def durable_messages(sqlite_db):
    return SQLMessageRepository(sqlite_db)


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def message_factory():
    return make_messages
