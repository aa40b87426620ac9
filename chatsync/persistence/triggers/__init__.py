"""
Sync pass triggers.
"""

from chatsync.persistence.triggers.base import PersistenceTrigger, ReadWriteLock
from chatsync.persistence.triggers.interval import IntervalTrigger
from chatsync.persistence.triggers.manual import ManualTrigger

__all__ = [
    "PersistenceTrigger",
    "ReadWriteLock",
    "IntervalTrigger",
    "ManualTrigger",
]
