"""
Tests for wiring the persistence stack from configuration.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from chatsync.config import ChatSyncConfig, DurableBackend, FastBackend, TriggerKind
from chatsync.errors import MigrationError, StoreUnavailableError
from chatsync.persistence.backends import redis_store
from chatsync.persistence.backends.memory import MemoryMessageStore, MemorySessionStore
from chatsync.persistence.backends.sqlite import SQLiteDatabase
from chatsync.persistence.events import RecordingEventSink
from chatsync.persistence.stack import PersistenceStack
from chatsync.persistence.triggers import IntervalTrigger, ManualTrigger


def sqlite_config(tmp_path, **sync):
    return ChatSyncConfig(
        durable_store={"backend": "sqlite", "sqlite_path": str(tmp_path / "stack.db")},
        sync={"trigger": "manual", **sync},
        migrations={"auto_migrate": True},
    )


class TestPersistenceStack:
    """Tests for PersistenceStack."""

    @pytest.mark.asyncio
    async def test_auto_migrate_and_wiring(self, tmp_path):
        async with PersistenceStack(sqlite_config(tmp_path)) as stack:
            assert stack.is_initialized
            assert stack.durable_enabled
            assert stack.stats.migrations_applied == 2
            assert stack.stats.durable_backend == "sqlite"
            assert stack.stats.fast_backend == "memory"
            assert isinstance(stack.fast_sessions, MemorySessionStore)
            assert await stack.migrator.is_up_to_date()
            assert stack.manager.durable_enabled
            assert stack.manager.trigger_name == "ManualTrigger"

        assert not stack.is_initialized

    @pytest.mark.asyncio
    async def test_end_to_end_sync_then_restore(self, tmp_path, session_factory, message_factory):
        async with PersistenceStack(sqlite_config(tmp_path)) as stack:
            session = session_factory(1)
            await stack.fast_sessions.upsert(session)
            await stack.fast_messages.batch_create(message_factory(session.id, 12))

            summary = await stack.manager.trigger()
            assert summary.ok
            assert len(await stack.durable_messages.list(session.id)) == 12

            await stack.fast_sessions.delete(session.id)
            result = await stack.restore.restore_all()
            assert result.session_count == 1
            assert result.skipped_count == 0
            assert result.message_count == 12
            assert (await stack.fast_sessions.get(session.id)).name == session.name

    @pytest.mark.asyncio
    async def test_durable_store_disabled(self):
        config = ChatSyncConfig(durable_store={"backend": DurableBackend.NONE})
        sink = RecordingEventSink()

        async with PersistenceStack(config, event_sink=sink) as stack:
            assert not stack.durable_enabled
            assert stack.stats.durable_backend == "none"
            assert stack.manager.durable_enabled is False
            with pytest.raises(RuntimeError):
                stack.backup
            with pytest.raises(RuntimeError):
                stack.migrator

            summary = await stack.manager.trigger()
            assert summary.durable_enabled is False

    @pytest.mark.asyncio
    async def test_accessors_require_initialize(self):
        stack = PersistenceStack(ChatSyncConfig())
        with pytest.raises(RuntimeError):
            stack.manager
        with pytest.raises(RuntimeError):
            stack.fast_sessions

    @pytest.mark.asyncio
    async def test_injected_components_are_used(self, tmp_path):
        database = SQLiteDatabase(tmp_path / "injected.db")
        sessions = MemorySessionStore()
        messages = MemoryMessageStore(sessions)
        trigger = ManualTrigger()

        stack = PersistenceStack(
            sqlite_config(tmp_path),
            fast_sessions=sessions,
            fast_messages=messages,
            database=database,
            trigger=trigger,
        )
        await stack.initialize()
        try:
            assert stack.fast_sessions is sessions
            assert stack.database is database
            assert stack.stats.fast_backend == "injected"
        finally:
            await stack.shutdown()

        # The stack does not close a database it did not create.
        assert await database.fetch_value("SELECT 1") == 1
        await database.close()

    @pytest.mark.asyncio
    async def test_interval_trigger_from_config(self, tmp_path):
        config = ChatSyncConfig(
            durable_store={"backend": "none"},
            sync={"trigger": TriggerKind.INTERVAL, "interval_seconds": 45},
        )
        async with PersistenceStack(config) as stack:
            assert stack.stats.trigger == IntervalTrigger(45).name

    @pytest.mark.asyncio
    async def test_invalid_config_rejected(self):
        config = ChatSyncConfig(
            durable_store={"backend": "none"},
            sync={"interval_seconds": 1, "poll_interval_seconds": 5},
        )
        with pytest.raises(ValueError):
            await PersistenceStack(config).initialize()


def broken_migrations(tmp_path):
    path = tmp_path / "broken_migrations"
    path.mkdir()
    (path / "000001_bad.up.sql").write_text("CREATE TABLE ok (id INTEGER);\nNOT VALID SQL;")
    return path


def fake_redis(ping_error=None):
    client = MagicMock()
    client.ping = AsyncMock(side_effect=ping_error)
    client.aclose = AsyncMock()
    return client


class TestStackStartupFailure:
    """A stack that fails to start releases what it opened."""

    @pytest.mark.asyncio
    async def test_failed_auto_migrate_closes_database(self, tmp_path):
        config = sqlite_config(tmp_path)
        config.migrations.migrations_dir = broken_migrations(tmp_path)
        stack = PersistenceStack(config)

        with pytest.raises(MigrationError):
            async with stack:
                pass

        assert not stack.is_initialized
        assert not stack._database.is_connected
        with pytest.raises(RuntimeError):
            stack.manager

    @pytest.mark.asyncio
    async def test_failed_redis_ping_closes_client(self, monkeypatch):
        client = fake_redis(RedisConnectionError("refused"))
        monkeypatch.setattr(redis_store, "create_redis_client", lambda config: client)
        config = ChatSyncConfig(fast_store={"backend": "redis"}, durable_store={"backend": "none"})
        stack = PersistenceStack(config)

        with pytest.raises(StoreUnavailableError):
            await stack.initialize()

        client.aclose.assert_awaited_once()
        assert not stack.is_initialized

    @pytest.mark.asyncio
    async def test_durable_failure_closes_redis(self, tmp_path, monkeypatch):
        client = fake_redis()
        monkeypatch.setattr(redis_store, "create_redis_client", lambda config: client)
        config = sqlite_config(tmp_path)
        config.fast_store.backend = FastBackend.REDIS
        config.migrations.migrations_dir = broken_migrations(tmp_path)
        stack = PersistenceStack(config)

        with pytest.raises(MigrationError):
            await stack.initialize()

        client.aclose.assert_awaited_once()
        assert not stack._database.is_connected
