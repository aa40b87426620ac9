"""
In-process session and message stores.

Used as the fast store in development and tests. Records are copied on
the way in and out so callers never share mutable state with the store.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from chatsync.errors import MessageNotFoundError, SessionNotFoundError
from chatsync.models import Message, MessageRole, Session


def _page(items: list, limit: int, offset: int) -> list:
    start = max(offset, 0)
    if limit <= 0:
        return items[start:]
    return items[start:start + limit]


class MemorySessionStore:
    """Dictionary-backed session store."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session.model_copy(deep=True)

    async def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def list(self) -> list[Session]:
        async with self._lock:
            sessions = sorted(self._sessions.values(), key=lambda s: (s.created_at, s.id))
            return [s.model_copy(deep=True) for s in sessions]

    async def list_active(self) -> list[Session]:
        return [s for s in await self.list() if not s.is_deleted()]

    async def upsert(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)

    async def batch_upsert(self, sessions: list[Session]) -> None:
        async with self._lock:
            for session in sessions:
                self._sessions[session.id] = session.model_copy(deep=True)

    async def update(self, session: Session) -> None:
        async with self._lock:
            if session.id not in self._sessions:
                raise SessionNotFoundError(session.id, operation="update")
            self._sessions[session.id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id, operation="delete")


class MemoryMessageStore:
    """
    Dictionary-backed message store.

    Writes are insert-or-ignore by message id and require the owning
    session to exist in ``sessions`` when one is given.
    """

    def __init__(self, sessions: Optional[MemorySessionStore] = None):
        self._sessions = sessions
        self._messages: dict[str, dict[str, Message]] = {}
        self._lock = asyncio.Lock()

    def count(self, session_id: str) -> int:
        return len(self._messages.get(session_id, {}))

    def _ordered(self, session_id: str) -> list[Message]:
        return sorted(self._messages.get(session_id, {}).values(), key=Message.sort_key)

    async def _check_session(self, session_id: str) -> None:
        if self._sessions is not None and not await self._sessions.exists(session_id):
            raise SessionNotFoundError(session_id, operation="create_message")

    async def get(self, session_id: str, message_id: str) -> Message:
        async with self._lock:
            message = self._messages.get(session_id, {}).get(message_id)
            if message is None:
                raise MessageNotFoundError(session_id, message_id)
            return message.model_copy(deep=True)

    async def list(
        self,
        session_id: str,
        limit: int = 0,
        offset: int = 0,
    ) -> list[Message]:
        async with self._lock:
            page = _page(self._ordered(session_id), limit, offset)
            return [m.model_copy(deep=True) for m in page]

    async def list_by_role(
        self,
        session_id: str,
        role: MessageRole,
        limit: int = 0,
    ) -> list[Message]:
        async with self._lock:
            matching = [m for m in self._ordered(session_id) if m.role == role]
            return [m.model_copy(deep=True) for m in _page(matching, limit, 0)]

    async def create(self, message: Message) -> None:
        await self.batch_create([message])

    async def batch_create(self, messages: list[Message]) -> None:
        for session_id in {m.session_id for m in messages}:
            await self._check_session(session_id)
        async with self._lock:
            for message in messages:
                bucket = self._messages.setdefault(message.session_id, {})
                bucket.setdefault(message.id, message.model_copy(deep=True))
