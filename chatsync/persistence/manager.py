"""
chatsync persistence manager

Background loop that copies the fast store into the durable store
whenever its trigger fires:
- Fixed-interval polling of the trigger
- Per-session failure isolation (a failing session never stops a pass)
- Paged message copy
- Manual "sync now" passes
- Graceful stop that lets an in-flight pass finish
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from chatsync.errors import ConnectivityError, SyncError
from chatsync.models import Session, utcnow
from chatsync.persistence.events import (
    StructlogEventSink,
    SyncEventSink,
    SyncItemFailed,
    SyncPassCompleted,
    SyncPassFailed,
    SyncPassStarted,
    TriggerCheckFailed,
    TriggerResetFailed,
)
from chatsync.persistence.interfaces import (
    MessageReader,
    MessageWriter,
    SessionReader,
    SessionWriter,
)
from chatsync.persistence.paging import iter_message_pages
from chatsync.persistence.triggers import PersistenceTrigger

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_POLL_INTERVAL = 1.0


@dataclass
class SyncSummary:
    """Outcome of one sync pass."""
    sessions_processed: int = 0
    messages_processed: int = 0
    failed_sessions: list[str] = field(default_factory=list)
    durable_enabled: bool = True
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failed_sessions

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions_processed": self.sessions_processed,
            "messages_processed": self.messages_processed,
            "failed_sessions": list(self.failed_sessions),
            "durable_enabled": self.durable_enabled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ManagerStats:
    """Counters for operators watching for repeated failures."""
    passes_run: int = 0
    passes_failed: int = 0
    consecutive_failures: int = 0
    last_summary: Optional[SyncSummary] = None
    last_error: Optional[str] = None


class PersistenceManager:
    """
    Runs sync passes from the fast store to the durable store.

    Without durable writers a pass only counts sessions and messages,
    which is useful as a metrics report when no durable store is wired.
    """

    def __init__(
        self,
        trigger: PersistenceTrigger,
        session_reader: SessionReader,
        message_reader: MessageReader,
        session_writer: Optional[SessionWriter] = None,
        message_writer: Optional[MessageWriter] = None,
        event_sink: Optional[SyncEventSink] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        lock: Optional[asyncio.Lock] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

        self._trigger = trigger
        self.session_reader = session_reader
        self.message_reader = message_reader
        self.session_writer = session_writer
        self.message_writer = message_writer
        self.events = event_sink or StructlogEventSink(logger)
        self.page_size = page_size
        self.poll_interval = poll_interval

        self._lock = lock
        self._stats = ManagerStats()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def stats(self) -> ManagerStats:
        return self._stats

    @property
    def trigger_name(self) -> str:
        return self._trigger.name

    @property
    def durable_enabled(self) -> bool:
        return self.session_writer is not None and self.message_writer is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the background loop."""
        if self.is_running:
            return

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop_event))
        logger.info(
            "Persistence manager started",
            trigger=self._trigger.name,
            durable_enabled=self.durable_enabled,
        )

    async def stop(self) -> None:
        """Stop the loop, waiting for any in-flight pass to finish."""
        if self._task is None:
            return

        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._stop_event = None
        logger.info("Persistence manager stopped", passes_run=self._stats.passes_run)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Poll the trigger until ``stop_event`` is set or the task is cancelled.

        A pass that has started always runs to completion, even if the loop
        is cancelled while waiting on it.
        """
        stop_event = stop_event or asyncio.Event()

        while not stop_event.is_set():
            await self._tick()

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _tick(self) -> None:
        try:
            due = await self._trigger.should_trigger()
        except Exception as e:
            self.events.emit(TriggerCheckFailed(trigger=self._trigger.name, error=str(e)))
            return

        if not due:
            return

        self._in_flight = asyncio.create_task(self._pass_and_reset())
        try:
            await asyncio.shield(self._in_flight)
        except asyncio.CancelledError:
            # Let the shielded pass finish before the loop goes away.
            await asyncio.wait({self._in_flight})
            raise
        except SyncError:
            # Already recorded in stats and emitted as SyncPassFailed.
            pass
        except Exception as e:
            self._record_failure(e)
            self.events.emit(SyncPassFailed(error=str(e)))
            logger.exception("Sync pass crashed")
        finally:
            self._in_flight = None

    async def _pass_and_reset(self) -> SyncSummary:
        try:
            return await self._guarded_pass()
        finally:
            await self._reset_trigger()

    async def _reset_trigger(self) -> None:
        try:
            await self._trigger.reset()
        except Exception as e:
            self.events.emit(TriggerResetFailed(trigger=self._trigger.name, error=str(e)))

    # === Manual passes ===

    async def trigger(self) -> SyncSummary:
        """Run exactly one pass now, then reset the trigger."""
        return await self._pass_and_reset()

    async def _guarded_pass(self) -> SyncSummary:
        if self._lock is None:
            return await self.sync_pass()
        async with self._lock:
            return await self.sync_pass()

    # === Sync pass ===

    async def sync_pass(self) -> SyncSummary:
        """
        Copy every fast-store session and its messages to the durable store.

        Raises ConnectivityError only when the session listing fails; any
        per-session failure is emitted and recorded in the summary.
        """
        summary = SyncSummary(durable_enabled=self.durable_enabled)
        started = time.monotonic()
        self.events.emit(SyncPassStarted(trigger=self._trigger.name, durable_enabled=self.durable_enabled))

        try:
            sessions = await self.session_reader.list()
        except SyncError as e:
            self._record_failure(e)
            self.events.emit(SyncPassFailed(error=str(e)))
            if isinstance(e, ConnectivityError):
                raise e.with_context(operation="sync")
            raise ConnectivityError(
                f"list sessions failed: {e.message}", operation="sync", cause=e
            ) from e

        for session in sessions:
            summary.sessions_processed += 1
            if await self._sync_session(session, summary):
                continue
            summary.failed_sessions.append(session.id)

        summary.finished_at = utcnow()
        summary.duration_seconds = time.monotonic() - started

        self._stats.passes_run += 1
        self._stats.last_summary = summary
        if summary.ok:
            self._stats.consecutive_failures = 0
        else:
            self._stats.consecutive_failures += 1

        self.events.emit(SyncPassCompleted(
            sessions_processed=summary.sessions_processed,
            messages_processed=summary.messages_processed,
            failed_sessions=list(summary.failed_sessions),
            duration_seconds=summary.duration_seconds,
        ))
        return summary

    def _record_failure(self, error: Exception) -> None:
        self._stats.passes_failed += 1
        self._stats.consecutive_failures += 1
        self._stats.last_error = str(error)

    async def _sync_session(self, session: Session, summary: SyncSummary) -> bool:
        """
        Copy one session. Returns False when any part of it failed.

        Any exception short of cancellation is contained here so one bad
        session never aborts the pass.
        """
        if self.session_writer is not None:
            try:
                await asyncio.shield(self.session_writer.upsert(session))
            except Exception as e:
                self.events.emit(SyncItemFailed(session_id=session.id, stage="upsert_session", error=str(e)))
                return False

        position = 0
        try:
            async for offset, page in iter_message_pages(self.message_reader, session.id, self.page_size):
                if self.message_writer is not None:
                    try:
                        await asyncio.shield(self.message_writer.batch_create(page))
                    except Exception as e:
                        self.events.emit(SyncItemFailed(
                            session_id=session.id, stage="write_messages", error=str(e), offset=offset,
                        ))
                        return False
                summary.messages_processed += len(page)
                position = offset + len(page)
        except Exception as e:
            self.events.emit(SyncItemFailed(
                session_id=session.id, stage="read_messages", error=str(e), offset=position,
            ))
            return False

        return True
