"""
Capability interfaces implemented by the fast and durable stores.

The engine depends only on these protocols; adapters are chosen once
when the persistence stack is built.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from chatsync.models import Message, MessageRole, Session


@runtime_checkable
class SessionReader(Protocol):
    """Read access to sessions."""

    async def get(self, session_id: str) -> Session:
        """Return the session or raise SessionNotFoundError."""
        ...

    async def list(self) -> list[Session]:
        ...

    async def list_active(self) -> list[Session]:
        """Sessions that are not soft-deleted."""
        ...


@runtime_checkable
class SessionWriter(Protocol):
    """Write access to sessions. Writes are create-or-overwrite by id."""

    async def upsert(self, session: Session) -> None:
        ...

    async def batch_upsert(self, sessions: list[Session]) -> None:
        ...

    async def update(self, session: Session) -> None:
        """Overwrite an existing session or raise SessionNotFoundError."""
        ...


@runtime_checkable
class MessageReader(Protocol):
    """Read access to messages, always ordered by (created_at, id)."""

    async def get(self, session_id: str, message_id: str) -> Message:
        ...

    async def list(
        self,
        session_id: str,
        limit: int = 0,
        offset: int = 0,
    ) -> list[Message]:
        """Return up to ``limit`` messages after skipping ``offset``.

        ``limit <= 0`` returns every remaining message.
        """
        ...

    async def list_by_role(
        self,
        session_id: str,
        role: MessageRole,
        limit: int = 0,
    ) -> list[Message]:
        ...


@runtime_checkable
class MessageWriter(Protocol):
    """Write access to messages. Writes are insert-or-ignore by id."""

    async def create(self, message: Message) -> None:
        ...

    async def batch_create(self, messages: list[Message]) -> None:
        ...
