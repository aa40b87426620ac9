"""
chatsync persistence engine

- Triggers deciding when a background pass runs
- PersistenceManager copying the fast store into the durable store
- BackupService / RestoreService for operator-driven copies
- SchemaMigrator for the durable schema
- PersistenceStack wiring all of the above from configuration
"""

from chatsync.persistence.backup import BackupResult, BackupService
from chatsync.persistence.events import (
    CompositeEventSink,
    RecordingEventSink,
    StructlogEventSink,
    SyncEventSink,
)
from chatsync.persistence.interfaces import (
    MessageReader,
    MessageWriter,
    SessionReader,
    SessionWriter,
)
from chatsync.persistence.manager import ManagerStats, PersistenceManager, SyncSummary
from chatsync.persistence.migrations import (
    NO_VERSION,
    MigrationStatus,
    SchemaMigrator,
)
from chatsync.persistence.restore import RestoreResult, RestoreService
from chatsync.persistence.stack import PersistenceStack
from chatsync.persistence.triggers import IntervalTrigger, ManualTrigger, PersistenceTrigger

__all__ = [
    "BackupResult",
    "BackupService",
    "CompositeEventSink",
    "RecordingEventSink",
    "StructlogEventSink",
    "SyncEventSink",
    "MessageReader",
    "MessageWriter",
    "SessionReader",
    "SessionWriter",
    "ManagerStats",
    "PersistenceManager",
    "SyncSummary",
    "NO_VERSION",
    "MigrationStatus",
    "SchemaMigrator",
    "RestoreResult",
    "RestoreService",
    "PersistenceStack",
    "IntervalTrigger",
    "ManualTrigger",
    "PersistenceTrigger",
]
