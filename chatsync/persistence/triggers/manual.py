"""
On-demand trigger fired by an operator or request handler.
"""

from __future__ import annotations

import asyncio

import structlog

from chatsync.persistence.triggers.base import PersistenceTrigger

logger = structlog.get_logger(__name__)


class ManualTrigger(PersistenceTrigger):
    """
    Single-slot pending signal.

    Signals raised while one is already pending are coalesced, so any
    number of trigger() calls between two polls yields one pass.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Queue[None] = asyncio.Queue(maxsize=1)

    @property
    def name(self) -> str:
        return "ManualTrigger"

    @property
    def pending(self) -> bool:
        return not self._pending.empty()

    def trigger(self) -> None:
        """Request a pass without blocking."""
        try:
            self._pending.put_nowait(None)
            logger.debug("Manual sync requested")
        except asyncio.QueueFull:
            logger.debug("Manual sync already pending")

    async def should_trigger(self) -> bool:
        try:
            self._pending.get_nowait()
        except asyncio.QueueEmpty:
            return False
        return True

    async def reset(self) -> None:
        while True:
            try:
                self._pending.get_nowait()
            except asyncio.QueueEmpty:
                return
