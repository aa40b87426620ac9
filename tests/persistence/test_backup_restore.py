"""
Tests for operator backup and restore against SQLite.
"""

import asyncio

import pytest

from chatsync.errors import (
    ConnectivityError,
    NotFoundError,
    SessionNotFoundError,
    StoreUnavailableError,
)
from chatsync.persistence.backends.memory import MemoryMessageStore, MemorySessionStore
from chatsync.persistence.backup import BackupService
from chatsync.persistence.restore import RestoreService


class UnreachableFastSessions:
    """Fast session store whose point reads fail with a driver error."""

    def __init__(self):
        self.writes = []

    async def get(self, session_id):
        raise StoreUnavailableError("redis", ConnectionError("timeout"), session_id=session_id)

    async def list(self):
        return []

    async def list_active(self):
        return []

    async def upsert(self, session):
        self.writes.append(session.id)

    async def batch_upsert(self, sessions):
        self.writes.extend(s.id for s in sessions)

    async def update(self, session):
        self.writes.append(session.id)


class CallRecorder:
    """Delegates to a store and records every method called on it."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []

    def __getattr__(self, name):
        method = getattr(self.inner, name)

        async def recorded(*args, **kwargs):
            self.calls.append(name)
            return await method(*args, **kwargs)

        return recorded


@pytest.fixture
def backup(fast_sessions, fast_messages, durable_sessions, durable_messages):
    return BackupService(fast_sessions, fast_messages, durable_sessions, durable_messages)


def make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages, **kwargs):
    return RestoreService(
        durable_sessions, durable_messages, fast_sessions, fast_sessions, fast_messages, **kwargs
    )


class TestBackupService:
    """Tests for backing up the fast store."""

    @pytest.mark.asyncio
    async def test_backup_all_copies_everything(
        self, backup, fast_sessions, fast_messages, durable_messages, session_factory, message_factory
    ):
        for index, count in [(1, 3), (2, 0), (3, 7)]:
            session = session_factory(index)
            await fast_sessions.upsert(session)
            await fast_messages.batch_create(message_factory(session.id, count))

        result = await backup.backup_all()

        assert result.session_count == 3
        assert result.message_count == 10
        assert result.end_time is not None
        assert len(await durable_messages.list("session-003")) == 7

    @pytest.mark.asyncio
    async def test_backup_is_idempotent(
        self, backup, fast_sessions, fast_messages, durable_sessions, durable_messages,
        session_factory, message_factory,
    ):
        session = session_factory(1)
        await fast_sessions.upsert(session)
        await fast_messages.batch_create(message_factory(session.id, 4))

        await backup.backup_all()
        await backup.backup_all()

        assert len(await durable_sessions.list()) == 1
        assert len(await durable_messages.list(session.id)) == 4

    @pytest.mark.asyncio
    async def test_backup_empty_store(self, backup):
        result = await backup.backup_all()
        assert result.session_count == 0
        assert result.message_count == 0

    @pytest.mark.asyncio
    async def test_backup_session_unknown(self, backup):
        with pytest.raises(SessionNotFoundError) as exc_info:
            await backup.backup_session("missing")

        assert exc_info.value.operation == "backup_session"

    @pytest.mark.asyncio
    async def test_backup_session_copies_one(
        self, backup, fast_sessions, fast_messages, durable_sessions, session_factory, message_factory
    ):
        for index in (1, 2):
            session = session_factory(index)
            await fast_sessions.upsert(session)
            await fast_messages.batch_create(message_factory(session.id, 2))

        result = await backup.backup_session("session-002")

        assert (result.session_count, result.message_count) == (1, 2)
        assert [s.id for s in await durable_sessions.list()] == ["session-002"]

    @pytest.mark.asyncio
    async def test_backup_serializes_with_shared_lock(
        self, fast_sessions, fast_messages, durable_sessions, durable_messages
    ):
        lock = asyncio.Lock()
        service = BackupService(
            fast_sessions, fast_messages, durable_sessions, durable_messages, lock=lock,
        )

        async with lock:
            pending = asyncio.create_task(service.backup_all())
            await asyncio.sleep(0.01)
            assert not pending.done()

        result = await pending
        assert result.session_count == 0


class TestRestoreService:
    """Tests for re-hydrating the fast store."""

    @pytest.mark.asyncio
    async def test_restore_skips_present_sessions(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages, session_factory, message_factory
    ):
        await durable_sessions.batch_upsert([session_factory(1), session_factory(2)])
        await durable_messages.batch_create(message_factory("session-002", 3))
        await fast_sessions.upsert(session_factory(1, name="Live copy"))
        service = make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages)

        result = await service.restore_all()

        assert (result.session_count, result.skipped_count, result.message_count) == (1, 1, 3)
        assert (await fast_sessions.get("session-001")).name == "Live copy"
        assert fast_messages.count("session-002") == 3

    @pytest.mark.asyncio
    async def test_force_overwrites_present_sessions(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages, session_factory
    ):
        await durable_sessions.upsert(session_factory(1))
        await fast_sessions.upsert(session_factory(1, name="Live copy"))
        service = make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages)

        result = await service.restore_all(force=True)

        assert result.skipped_count == 0
        assert (await fast_sessions.get("session-001")).name == "Campaign 1"

    @pytest.mark.asyncio
    async def test_soft_deleted_sessions_not_restored(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages, session_factory
    ):
        await durable_sessions.batch_upsert([session_factory(1), session_factory(2)])
        await durable_sessions.soft_delete("session-002")
        service = make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages)

        result = await service.restore_all()
        assert result.session_count == 1
        assert not await fast_sessions.exists("session-002")

        with pytest.raises(NotFoundError):
            await service.restore_session("session-002")

    @pytest.mark.asyncio
    async def test_unreachable_fast_store_aborts_without_writes(
        self, durable_sessions, durable_messages, session_factory
    ):
        """A failed existence check must not be mistaken for absence."""
        await durable_sessions.upsert(session_factory(1))
        fast = UnreachableFastSessions()
        fast_messages = MemoryMessageStore()
        service = make_restore(durable_sessions, durable_messages, fast, fast_messages)

        with pytest.raises(ConnectivityError) as exc_info:
            await service.restore_session("session-001")

        assert exc_info.value.operation == "restore_session"
        assert exc_info.value.session_id == "session-001"
        assert fast.writes == []

        with pytest.raises(ConnectivityError):
            await service.restore_all()
        assert fast.writes == []

    @pytest.mark.asyncio
    async def test_restore_session_skip_touches_nothing(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages, session_factory
    ):
        """A skipped session reads nothing durable and writes nothing fast."""
        await durable_sessions.upsert(session_factory(1))
        await fast_sessions.upsert(session_factory(1, name="Live copy"))
        durable_reader = CallRecorder(durable_sessions)
        durable_message_reader = CallRecorder(durable_messages)
        fast_writer = CallRecorder(fast_sessions)
        fast_message_writer = CallRecorder(fast_messages)
        service = RestoreService(
            durable_reader, durable_message_reader, fast_sessions, fast_writer, fast_message_writer,
        )

        result = await service.restore_session("session-001")

        assert (result.session_count, result.message_count, result.skipped_count) == (0, 0, 1)
        assert durable_reader.calls == []
        assert durable_message_reader.calls == []
        assert fast_writer.calls == []
        assert fast_message_writer.calls == []
        assert (await fast_sessions.get("session-001")).name == "Live copy"

    @pytest.mark.asyncio
    async def test_restore_session_force_overwrites(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages, session_factory, message_factory
    ):
        await durable_sessions.upsert(session_factory(1))
        await durable_messages.batch_create(message_factory("session-001", 4))
        await fast_sessions.upsert(session_factory(1, name="Live copy"))
        service = make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages)

        result = await service.restore_session("session-001", force=True)

        assert (result.session_count, result.message_count, result.skipped_count) == (1, 4, 0)
        assert (await fast_sessions.get("session-001")).name == "Campaign 1"
        assert fast_messages.count("session-001") == 4

    @pytest.mark.asyncio
    async def test_restore_session_missing_everywhere(
        self, durable_sessions, durable_messages, fast_sessions, fast_messages
    ):
        service = make_restore(durable_sessions, durable_messages, fast_sessions, fast_messages)
        with pytest.raises(SessionNotFoundError):
            await service.restore_session("ghost")


class TestRoundTrip:
    """Backup, lose the session from the fast store, restore it."""

    @pytest.mark.asyncio
    async def test_long_history_survives(
        self, fast_sessions, fast_messages, durable_sessions, durable_messages,
        session_factory, message_factory,
    ):
        session = session_factory(1)
        await fast_sessions.upsert(session)
        messages = message_factory(session.id, 250)
        await fast_messages.batch_create(messages)

        backed_up = await BackupService(
            fast_sessions, fast_messages, durable_sessions, durable_messages, page_size=100,
        ).backup_all()
        assert (backed_up.session_count, backed_up.message_count) == (1, 250)

        await fast_sessions.delete(session.id)
        assert not await fast_sessions.exists(session.id)

        restored = await make_restore(
            durable_sessions, durable_messages, fast_sessions, fast_messages, page_size=100,
        ).restore_all()

        assert restored.session_count == 1
        assert restored.skipped_count == 0
        assert restored.message_count == 250
        assert (await fast_sessions.get(session.id)).settings == session.settings
        loaded = await fast_messages.list(session.id)
        assert [m.id for m in loaded] == [m.id for m in messages]

    @pytest.mark.asyncio
    async def test_restore_into_empty_store(
        self, fast_sessions, fast_messages, durable_sessions, durable_messages,
        session_factory, message_factory,
    ):
        session = session_factory(1)
        await fast_sessions.upsert(session)
        await fast_messages.batch_create(message_factory(session.id, 120))
        await BackupService(
            fast_sessions, fast_messages, durable_sessions, durable_messages, page_size=50,
        ).backup_all()

        empty_sessions = MemorySessionStore()
        empty_messages = MemoryMessageStore(empty_sessions)
        restored = await make_restore(
            durable_sessions, durable_messages, empty_sessions, empty_messages, page_size=50,
        ).restore_all()

        assert (restored.session_count, restored.message_count, restored.skipped_count) == (1, 120, 0)
        assert empty_messages.count(session.id) == 120
