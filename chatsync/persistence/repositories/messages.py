"""
Durable message repository (``client_messages``).
"""

from __future__ import annotations

import json
from typing import Any

from chatsync.errors import MessageNotFoundError, SessionNotFoundError
from chatsync.models import Message, MessageRole, ToolCall
from chatsync.persistence.database import DatabaseConnection
from chatsync.persistence.repositories.base import BaseRepository, from_json, to_datetime


class SQLMessageRepository(BaseRepository[Message]):
    """
    Append-only messages in the durable store.

    Inserts ignore ids that already exist, so copying the same page twice
    leaves exactly one row per message.
    """

    table_name = "client_messages"
    sessions_table = "client_sessions"
    columns = (
        "id",
        "session_id",
        "role",
        "content",
        "tool_calls",
        "player_id",
        "created_at",
    )

    def _serialize(self, entity: Message) -> tuple:
        return (
            entity.id,
            entity.session_id,
            entity.role.value,
            entity.content,
            json.dumps([tc.model_dump() for tc in entity.tool_calls]),
            entity.player_id,
            entity.created_at,
        )

    def _deserialize(self, row: dict[str, Any]) -> Message:
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            tool_calls=[ToolCall(**tc) for tc in from_json(row["tool_calls"], [])],
            player_id=row["player_id"],
            created_at=to_datetime(row["created_at"]),
        )

    @property
    def _insert_sql(self) -> str:
        return (
            f"INSERT INTO {self.table_name} ({self._column_list}) "
            f"VALUES ({self._placeholders}) "
            "ON CONFLICT (id) DO NOTHING"
        )

    async def get(self, session_id: str, message_id: str) -> Message:
        with self._driver_errors("get_message", session_id):
            row = await self.db.fetch_one(
                f"SELECT {self._column_list} FROM {self.table_name} "
                "WHERE session_id = ? AND id = ?",
                (session_id, message_id),
            )
        if row is None:
            raise MessageNotFoundError(session_id, message_id)
        return self._deserialize(row)

    async def list(
        self,
        session_id: str,
        limit: int = 0,
        offset: int = 0,
    ) -> list[Message]:
        query = (
            f"SELECT {self._column_list} FROM {self.table_name} "
            "WHERE session_id = ? ORDER BY created_at, id"
        )
        params: tuple = (session_id,)
        if limit > 0:
            query += " LIMIT ? OFFSET ?"
            params += (limit, max(offset, 0))
        elif offset > 0:
            # SQLite only accepts OFFSET after a LIMIT.
            query += " LIMIT ? OFFSET ?"
            params += (2**62, offset)

        with self._driver_errors("list_messages", session_id):
            rows = await self.db.fetch_all(query, params)
        return [self._deserialize(row) for row in rows]

    async def list_by_role(
        self,
        session_id: str,
        role: MessageRole,
        limit: int = 0,
    ) -> list[Message]:
        query = (
            f"SELECT {self._column_list} FROM {self.table_name} "
            "WHERE session_id = ? AND role = ? ORDER BY created_at, id"
        )
        params: tuple = (session_id, MessageRole(role).value)
        if limit > 0:
            query += " LIMIT ?"
            params += (limit,)

        with self._driver_errors("list_messages_by_role", session_id):
            rows = await self.db.fetch_all(query, params)
        return [self._deserialize(row) for row in rows]

    async def _require_sessions(self, conn: DatabaseConnection, session_ids: set[str]) -> None:
        for session_id in sorted(session_ids):
            found = await conn.fetch_value(
                f"SELECT 1 FROM {self.sessions_table} WHERE id = ?",
                (session_id,),
            )
            if not found:
                raise SessionNotFoundError(session_id, operation="create_messages")

    async def create(self, message: Message) -> None:
        await self.batch_create([message])

    async def batch_create(self, messages: list[Message]) -> None:
        if not messages:
            return
        session_id = messages[0].session_id
        with self._driver_errors("batch_create_messages", session_id):
            async with self.db.transaction() as conn:
                await self._require_sessions(conn, {m.session_id for m in messages})
                await conn.execute_many(
                    self._insert_sql,
                    [self._serialize(m) for m in messages],
                )
