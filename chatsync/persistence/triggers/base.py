"""
Persistence trigger base class.

A trigger answers "should a sync pass run now?" and is reset after every
pass, automatic or forced.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator


class PersistenceTrigger(ABC):
    """Decides when the persistence manager runs a sync pass."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human readable description used in logs."""
        pass

    @abstractmethod
    async def should_trigger(self) -> bool:
        """Return True when a pass is due."""
        pass

    @abstractmethod
    async def reset(self) -> None:
        """Record that a pass has just run."""
        pass

    def __repr__(self) -> str:
        return self.name


class ReadWriteLock:
    """
    Many readers or one writer.

    Writers are preferred once waiting so a stream of readers cannot
    starve a reset.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
