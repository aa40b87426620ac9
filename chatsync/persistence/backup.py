"""
chatsync backup service

Operator-invoked copy of the fast store into the durable store. Unlike
the background pass, any failing item aborts the whole call.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator, Optional

import structlog

from chatsync.errors import SyncError, as_item_failure
from chatsync.models import Session, utcnow
from chatsync.persistence.interfaces import (
    MessageReader,
    MessageWriter,
    SessionReader,
    SessionWriter,
)
from chatsync.persistence.paging import iter_message_pages

logger = structlog.get_logger(__name__)


@dataclass
class BackupResult:
    """Result of a backup operation."""
    session_count: int = 0
    message_count: int = 0
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_count": self.session_count,
            "message_count": self.message_count,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
        }


@asynccontextmanager
async def optional_lock(lock: Optional[asyncio.Lock]) -> AsyncGenerator[None, None]:
    if lock is None:
        yield
        return
    async with lock:
        yield


class BackupService:
    """
    Copies sessions and messages from the fast store to the durable store.

    Re-running a backup is harmless: sessions upsert by id and messages are
    inserted only if their id is new.
    """

    def __init__(
        self,
        session_reader: SessionReader,
        message_reader: MessageReader,
        session_writer: SessionWriter,
        message_writer: MessageWriter,
        page_size: int = 100,
        lock: Optional[asyncio.Lock] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.session_reader = session_reader
        self.message_reader = message_reader
        self.session_writer = session_writer
        self.message_writer = message_writer
        self.page_size = page_size
        self._lock = lock

    async def backup_all(self) -> BackupResult:
        """Back up every fast-store session and all of its messages."""
        result = BackupResult()
        started = time.monotonic()
        logger.info("Backup started", scope="all")

        async with optional_lock(self._lock):
            try:
                sessions = await self.session_reader.list()
                if sessions:
                    await asyncio.shield(self.session_writer.batch_upsert(sessions))
            except SyncError as e:
                raise as_item_failure(e, "backup_all")
            result.session_count = len(sessions)
            logger.info("Backup sessions copied", count=result.session_count)

            for session in sessions:
                result.message_count += await self._copy_messages(session, "backup_all")

        return self._finish(result, started)

    async def backup_session(self, session_id: str) -> BackupResult:
        """Back up one session and its full history."""
        result = BackupResult()
        started = time.monotonic()
        logger.info("Backup started", scope="session", session_id=session_id)

        async with optional_lock(self._lock):
            try:
                session = await self.session_reader.get(session_id)
                await asyncio.shield(self.session_writer.upsert(session))

                messages = await self.message_reader.list(session_id, limit=0)
                if messages:
                    await asyncio.shield(self.message_writer.batch_create(messages))
            except SyncError as e:
                raise as_item_failure(e, "backup_session", session_id)

        result.session_count = 1
        result.message_count = len(messages)
        return self._finish(result, started)

    async def _copy_messages(self, session: Session, operation: str) -> int:
        copied = 0
        try:
            async for _, page in iter_message_pages(self.message_reader, session.id, self.page_size):
                await asyncio.shield(self.message_writer.batch_create(page))
                copied += len(page)
        except SyncError as e:
            raise as_item_failure(e, operation, session.id)
        return copied

    @staticmethod
    def _finish(result: BackupResult, started: float) -> BackupResult:
        result.end_time = utcnow()
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Backup completed",
            session_count=result.session_count,
            message_count=result.message_count,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result
