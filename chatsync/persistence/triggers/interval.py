"""
Time based trigger: fires once the configured interval has elapsed.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from chatsync.persistence.triggers.base import PersistenceTrigger, ReadWriteLock

logger = structlog.get_logger(__name__)


class IntervalTrigger(PersistenceTrigger):
    """
    Fires when ``interval_seconds`` have passed since the last reset.

    A trigger that has never been reset fires immediately, so the first
    poll after startup always runs a pass.
    """

    def __init__(
        self,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_fired: Optional[float] = None
        self._lock = ReadWriteLock()

    @property
    def name(self) -> str:
        return f"IntervalTrigger(interval={self.interval_seconds:g}s)"

    @property
    def last_fired(self) -> Optional[float]:
        with self._lock.read():
            return self._last_fired

    async def should_trigger(self) -> bool:
        with self._lock.read():
            if self._last_fired is None:
                return True
            return self._clock() - self._last_fired >= self.interval_seconds

    async def reset(self) -> None:
        with self._lock.write():
            self._last_fired = self._clock()
        logger.debug("Interval trigger reset", interval=self.interval_seconds)
