"""
chatsync store backends

- memory: in-process fast store
- redis_store: Redis fast store
- sqlite / postgres: durable database connections
"""

from chatsync.persistence.backends.memory import MemoryMessageStore, MemorySessionStore

__all__ = [
    "MemoryMessageStore",
    "MemorySessionStore",
]
