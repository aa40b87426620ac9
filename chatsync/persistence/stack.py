"""
chatsync persistence stack

Builds every adapter and service once at startup from configuration, so
the sync engine never has to probe a store for capabilities at runtime.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog
from redis.exceptions import RedisError

from chatsync.config import (
    ChatSyncConfig,
    FastBackend,
    TriggerKind,
    get_config,
)
from chatsync.errors import StoreUnavailableError
from chatsync.models import utcnow
from chatsync.persistence.backends.memory import MemoryMessageStore, MemorySessionStore
from chatsync.persistence.backup import BackupService
from chatsync.persistence.database import Database, create_database
from chatsync.persistence.events import SyncEventSink
from chatsync.persistence.manager import PersistenceManager
from chatsync.persistence.migrations.runner import (
    DirectoryMigrationSource,
    MigrationSource,
    PackagedMigrationSource,
    SchemaMigrator,
)
from chatsync.persistence.repositories import SQLMessageRepository, SQLSessionRepository
from chatsync.persistence.restore import RestoreService
from chatsync.persistence.triggers import IntervalTrigger, ManualTrigger, PersistenceTrigger

logger = structlog.get_logger(__name__)


@dataclass
class StackStats:
    """Startup facts about the wired stack."""
    fast_backend: str = ""
    durable_backend: str = ""
    trigger: str = ""
    migrations_applied: int = 0
    initialized_at: Optional[datetime] = None


class PersistenceStack:
    """
    Owns the fast store, the durable database and the sync services.

    Fast stores and the database may be passed in (tests, embedding
    applications); otherwise they are created from configuration.
    """

    def __init__(
        self,
        config: Optional[ChatSyncConfig] = None,
        fast_sessions: Any = None,
        fast_messages: Any = None,
        database: Optional[Database] = None,
        trigger: Optional[PersistenceTrigger] = None,
        event_sink: Optional[SyncEventSink] = None,
    ):
        self.config = config or get_config()
        self._fast_sessions = fast_sessions
        self._fast_messages = fast_messages
        self._database = database
        self._trigger = trigger
        self._event_sink = event_sink

        self._redis: Any = None
        self._owns_database = database is None
        self._durable_sessions: Optional[SQLSessionRepository] = None
        self._durable_messages: Optional[SQLMessageRepository] = None
        self._migrator: Optional[SchemaMigrator] = None
        self._manager: Optional[PersistenceManager] = None
        self._backup: Optional[BackupService] = None
        self._restore: Optional[RestoreService] = None

        self._stats = StackStats()
        self._initialized = False
        self._lock = asyncio.Lock()

    # === Accessors ===

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def stats(self) -> StackStats:
        return self._stats

    @property
    def durable_enabled(self) -> bool:
        return self._database is not None

    @property
    def fast_sessions(self) -> Any:
        if not self._initialized:
            raise RuntimeError("Persistence stack not initialized")
        return self._fast_sessions

    @property
    def fast_messages(self) -> Any:
        if not self._initialized:
            raise RuntimeError("Persistence stack not initialized")
        return self._fast_messages

    @property
    def manager(self) -> PersistenceManager:
        if not self._manager:
            raise RuntimeError("Persistence stack not initialized")
        return self._manager

    @property
    def database(self) -> Database:
        return self._require_durable(self._database)

    @property
    def durable_sessions(self) -> SQLSessionRepository:
        return self._require_durable(self._durable_sessions)

    @property
    def durable_messages(self) -> SQLMessageRepository:
        return self._require_durable(self._durable_messages)

    @property
    def migrator(self) -> SchemaMigrator:
        return self._require_durable(self._migrator)

    @property
    def backup(self) -> BackupService:
        return self._require_durable(self._backup)

    @property
    def restore(self) -> RestoreService:
        return self._require_durable(self._restore)

    def _require_durable(self, component: Any) -> Any:
        if not self._initialized:
            raise RuntimeError("Persistence stack not initialized")
        if component is None:
            raise RuntimeError("No durable store configured")
        return component

    # === Lifecycle ===

    async def initialize(self) -> None:
        """Connect stores and wire every service."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            errors = self.config.validate_backends()
            if errors:
                raise ValueError(f"Invalid chatsync config: {errors}")

            logger.info(
                "Initializing persistence stack",
                fast_backend=self.config.fast_store.backend.value,
                durable_backend=self.config.durable_store.backend.value,
            )

            try:
                await self._init_fast_store()
                await self._init_durable_store()
                if self._migrator is not None and self.config.migrations.auto_migrate:
                    applied = await self._migrator.up()
                    self._stats.migrations_applied = len(applied)
            except BaseException:
                # Nothing reaches shutdown() unless initialize succeeds.
                await self._release_connections()
                raise

            sync = self.config.sync
            shared_lock = asyncio.Lock() if sync.serialize_operations else None
            trigger = self._trigger or self._build_trigger()

            self._manager = PersistenceManager(
                trigger=trigger,
                session_reader=self._fast_sessions,
                message_reader=self._fast_messages,
                session_writer=self._durable_sessions,
                message_writer=self._durable_messages,
                event_sink=self._event_sink,
                page_size=sync.page_size,
                poll_interval=sync.poll_interval_seconds,
                lock=shared_lock,
            )

            if self._database is not None:
                self._backup = BackupService(
                    session_reader=self._fast_sessions,
                    message_reader=self._fast_messages,
                    session_writer=self._durable_sessions,
                    message_writer=self._durable_messages,
                    page_size=sync.page_size,
                    lock=shared_lock,
                )
                self._restore = RestoreService(
                    durable_session_reader=self._durable_sessions,
                    durable_message_reader=self._durable_messages,
                    fast_session_reader=self._fast_sessions,
                    fast_session_writer=self._fast_sessions,
                    fast_message_writer=self._fast_messages,
                    page_size=sync.page_size,
                    lock=shared_lock,
                )

            self._stats.trigger = trigger.name
            self._stats.initialized_at = utcnow()
            self._initialized = True

            logger.info("Persistence stack initialized", trigger=trigger.name)

    async def shutdown(self) -> None:
        """Stop the manager and close every connection this stack opened."""
        if not self._initialized:
            return

        async with self._lock:
            logger.info("Shutting down persistence stack")

            if self._manager is not None:
                await self._manager.stop()

            await self._release_connections()

            self._initialized = False
            logger.info("Persistence stack shutdown complete")

    async def _release_connections(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._database is not None and self._owns_database:
            await self._database.close()

    async def __aenter__(self) -> "PersistenceStack":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # === Builders ===

    async def _init_fast_store(self) -> None:
        if self._fast_sessions is not None and self._fast_messages is not None:
            self._stats.fast_backend = "injected"
            return

        fast = self.config.fast_store
        if fast.backend == FastBackend.REDIS:
            from chatsync.persistence.backends.redis_store import (
                RedisMessageStore,
                RedisSessionStore,
                create_redis_client,
            )

            self._redis = create_redis_client(fast)
            try:
                await self._redis.ping()
            except RedisError as e:
                raise StoreUnavailableError("redis", e, operation="connect") from e
            self._fast_sessions = RedisSessionStore(self._redis, fast.redis_prefix)
            self._fast_messages = RedisMessageStore(self._redis, fast.redis_prefix)
        else:
            self._fast_sessions = MemorySessionStore()
            self._fast_messages = MemoryMessageStore(self._fast_sessions)

        self._stats.fast_backend = fast.backend.value

    async def _init_durable_store(self) -> None:
        if self._database is None:
            self._database = create_database(self.config.durable_store)
        if self._database is None:
            self._stats.durable_backend = "none"
            return

        await self._database.connect()
        self._durable_sessions = SQLSessionRepository(self._database)
        self._durable_messages = SQLMessageRepository(self._database)
        self._migrator = SchemaMigrator(self._database, self._migration_source())
        self._stats.durable_backend = self._database.dialect.value

    def _migration_source(self) -> MigrationSource:
        path = self.config.migrations.migrations_dir
        if path is not None:
            return DirectoryMigrationSource(path)
        return PackagedMigrationSource(self._database.dialect)

    def _build_trigger(self) -> PersistenceTrigger:
        sync = self.config.sync
        if sync.trigger == TriggerKind.MANUAL:
            return ManualTrigger()
        return IntervalTrigger(sync.interval_seconds)
