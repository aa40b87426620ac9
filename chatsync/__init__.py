"""
chatsync - persistence synchronization for session-oriented chat.

Keeps a fast primary store (Redis or memory) and a durable relational
store (PostgreSQL or SQLite) in step: background sync passes, operator
backup and restore, and versioned schema migrations.
"""

__version__ = "0.1.0"

from chatsync.config import ChatSyncConfig, get_config, reset_config, set_config
from chatsync.errors import (
    ConnectivityError,
    MessageNotFoundError,
    MigrationError,
    NotFoundError,
    PartialItemError,
    SessionNotFoundError,
    StoreUnavailableError,
    SyncError,
)
from chatsync.models import Message, MessageRole, Session, ToolCall

__all__ = [
    "__version__",
    "ChatSyncConfig",
    "get_config",
    "set_config",
    "reset_config",
    "SyncError",
    "NotFoundError",
    "SessionNotFoundError",
    "MessageNotFoundError",
    "ConnectivityError",
    "StoreUnavailableError",
    "PartialItemError",
    "MigrationError",
    "Message",
    "MessageRole",
    "Session",
    "ToolCall",
]
