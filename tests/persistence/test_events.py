"""
Tests for sync event sinks.
"""

from unittest.mock import MagicMock

from chatsync.persistence.events import (
    CompositeEventSink,
    RecordingEventSink,
    StructlogEventSink,
    SyncEventSink,
    SyncItemFailed,
    SyncPassCompleted,
)


class TestEventSinks:
    def test_event_to_dict(self):
        event = SyncItemFailed(session_id="s1", stage="write_messages", error="boom", offset=200)
        data = event.to_dict()

        assert data["event_type"] == "sync_item_failed"
        assert data["offset"] == 200
        assert isinstance(data["timestamp"], str)

    def test_structlog_sink_uses_event_level(self):
        bound = MagicMock()
        sink = StructlogEventSink(bound)

        sink.emit(SyncItemFailed(session_id="s1", stage="upsert_session", error="x"))

        bound.warning.assert_called_once()
        args, kwargs = bound.warning.call_args
        assert args == ("sync_item_failed",)
        assert kwargs["session_id"] == "s1"

    def test_recording_and_composite(self):
        first, second = RecordingEventSink(), RecordingEventSink()
        sink = CompositeEventSink(first, second)
        assert isinstance(sink, SyncEventSink)

        sink.emit(SyncPassCompleted(
            sessions_processed=1, messages_processed=2, failed_sessions=[], duration_seconds=0.1,
        ))

        assert len(first.of_type(SyncPassCompleted)) == 1
        assert len(second.events) == 1
        first.clear()
        assert first.events == []
