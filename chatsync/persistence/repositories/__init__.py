"""
Durable store repositories.
"""

from chatsync.persistence.repositories.base import BaseRepository
from chatsync.persistence.repositories.messages import SQLMessageRepository
from chatsync.persistence.repositories.sessions import SQLSessionRepository

__all__ = [
    "BaseRepository",
    "SQLMessageRepository",
    "SQLSessionRepository",
]
