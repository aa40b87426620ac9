"""
Structured sync events.

The background manager has no caller to return errors to, so everything
noteworthy about a pass is emitted as a typed event into an injected
sink. The default sink writes structlog records.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

import structlog

from chatsync.models import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class SyncEvent:
    """Base class for events emitted by the persistence manager."""
    timestamp: datetime = field(default_factory=utcnow, kw_only=True)

    event_type = "sync_event"
    level = "info"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["event_type"] = self.event_type
        return data


@dataclass
class SyncPassStarted(SyncEvent):
    trigger: str
    durable_enabled: bool

    event_type = "sync_pass_started"
    level = "debug"


@dataclass
class SyncPassCompleted(SyncEvent):
    sessions_processed: int
    messages_processed: int
    failed_sessions: list[str]
    duration_seconds: float

    event_type = "sync_pass_completed"


@dataclass
class SyncItemFailed(SyncEvent):
    session_id: str
    stage: str
    error: str
    offset: Optional[int] = None

    event_type = "sync_item_failed"
    level = "warning"


@dataclass
class SyncPassFailed(SyncEvent):
    error: str

    event_type = "sync_pass_failed"
    level = "error"


@dataclass
class TriggerCheckFailed(SyncEvent):
    trigger: str
    error: str

    event_type = "trigger_check_failed"
    level = "error"


@dataclass
class TriggerResetFailed(SyncEvent):
    trigger: str
    error: str

    event_type = "trigger_reset_failed"
    level = "error"


@runtime_checkable
class SyncEventSink(Protocol):
    """Receives sync events. Implementations must not raise."""

    def emit(self, event: SyncEvent) -> None:
        ...


class StructlogEventSink:
    """Writes every event as one structured log record."""

    def __init__(self, bound_logger: Any = None):
        self._logger = bound_logger or logger

    def emit(self, event: SyncEvent) -> None:
        fields = event.to_dict()
        name = fields.pop("event_type")
        getattr(self._logger, event.level)(name, **fields)


class RecordingEventSink:
    """Keeps events in memory; used by tests and the CLI summary."""

    def __init__(self) -> None:
        self.events: list[SyncEvent] = []

    def emit(self, event: SyncEvent) -> None:
        self.events.append(event)

    def of_type(self, event_cls: type) -> list[SyncEvent]:
        return [e for e in self.events if isinstance(e, event_cls)]

    def clear(self) -> None:
        self.events.clear()


class CompositeEventSink:
    """Fans each event out to several sinks."""

    def __init__(self, *sinks: SyncEventSink):
        self.sinks = list(sinks)

    def emit(self, event: SyncEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
