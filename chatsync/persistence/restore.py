"""
chatsync restore service

Operator-invoked re-hydration of the fast store from the durable store.
Sessions already present in the fast store are skipped unless forced;
messages always insert-or-ignore.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from chatsync.errors import ConnectivityError, NotFoundError, SyncError, as_item_failure
from chatsync.models import Session, utcnow
from chatsync.persistence.backup import optional_lock
from chatsync.persistence.interfaces import (
    MessageReader,
    MessageWriter,
    SessionReader,
    SessionWriter,
)
from chatsync.persistence.paging import iter_message_pages

logger = structlog.get_logger(__name__)


@dataclass
class RestoreResult:
    """Result of a restore operation."""
    session_count: int = 0
    message_count: int = 0
    skipped_count: int = 0
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_count": self.session_count,
            "message_count": self.message_count,
            "skipped_count": self.skipped_count,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
        }


class RestoreService:
    """Copies durable sessions and messages back into the fast store."""

    def __init__(
        self,
        durable_session_reader: SessionReader,
        durable_message_reader: MessageReader,
        fast_session_reader: SessionReader,
        fast_session_writer: SessionWriter,
        fast_message_writer: MessageWriter,
        page_size: int = 100,
        lock: Optional[asyncio.Lock] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.durable_session_reader = durable_session_reader
        self.durable_message_reader = durable_message_reader
        self.fast_session_reader = fast_session_reader
        self.fast_session_writer = fast_session_writer
        self.fast_message_writer = fast_message_writer
        self.page_size = page_size
        self._lock = lock

    async def exists_in_fast_store(self, session_id: str, operation: str) -> bool:
        """
        Point existence check against the fast store.

        Only a not-found answer counts as absent; any other read failure
        raises ConnectivityError so nothing gets overwritten blindly.
        """
        try:
            await self.fast_session_reader.get(session_id)
        except NotFoundError:
            return False
        except ConnectivityError as e:
            raise e.with_context(operation=operation, session_id=session_id)
        except SyncError as e:
            raise ConnectivityError(
                f"existence check failed: {e.message}",
                operation=operation,
                session_id=session_id,
                cause=e,
            ) from e
        return True

    async def restore_all(self, force: bool = False) -> RestoreResult:
        """Restore every non-deleted durable session and its messages."""
        result = RestoreResult()
        started = time.monotonic()
        logger.info("Restore started", scope="all", force=force)

        async with optional_lock(self._lock):
            try:
                sessions = await self.durable_session_reader.list_active()
            except SyncError as e:
                raise as_item_failure(e, "restore_all")

            restored: list[Session] = []
            for session in sessions:
                if not force and await self.exists_in_fast_store(session.id, "restore_all"):
                    result.skipped_count += 1
                    logger.debug("Session already in fast store, skipping", session_id=session.id)
                    continue
                try:
                    await asyncio.shield(self.fast_session_writer.upsert(session))
                except SyncError as e:
                    raise as_item_failure(e, "restore_all", session.id)
                restored.append(session)

            result.session_count = len(restored)
            logger.info(
                "Restore sessions copied",
                count=result.session_count,
                skipped=result.skipped_count,
            )

            for session in restored:
                result.message_count += await self._copy_messages(session.id, "restore_all")

        return self._finish(result, started)

    async def restore_session(self, session_id: str, force: bool = False) -> RestoreResult:
        """Restore one session; a soft-deleted durable session is not found."""
        result = RestoreResult()
        started = time.monotonic()
        logger.info("Restore started", scope="session", session_id=session_id, force=force)

        async with optional_lock(self._lock):
            if not force and await self.exists_in_fast_store(session_id, "restore_session"):
                logger.info("Session already in fast store, skipping", session_id=session_id)
                result.skipped_count = 1
                return self._finish(result, started)

            try:
                session = await self.durable_session_reader.get(session_id)
                await asyncio.shield(self.fast_session_writer.upsert(session))

                messages = await self.durable_message_reader.list(session_id, limit=0)
                if messages:
                    await asyncio.shield(self.fast_message_writer.batch_create(messages))
            except SyncError as e:
                raise as_item_failure(e, "restore_session", session_id)

        result.session_count = 1
        result.message_count = len(messages)
        return self._finish(result, started)

    async def _copy_messages(self, session_id: str, operation: str) -> int:
        copied = 0
        try:
            async for _, page in iter_message_pages(self.durable_message_reader, session_id, self.page_size):
                await asyncio.shield(self.fast_message_writer.batch_create(page))
                copied += len(page)
        except SyncError as e:
            raise as_item_failure(e, operation, session_id)
        return copied

    @staticmethod
    def _finish(result: RestoreResult, started: float) -> RestoreResult:
        result.end_time = utcnow()
        result.duration_seconds = time.monotonic() - started
        logger.info(
            "Restore completed",
            session_count=result.session_count,
            message_count=result.message_count,
            skipped_count=result.skipped_count,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result
