"""
Durable session repository (``client_sessions``).
"""

from __future__ import annotations

import json
from typing import Any

from chatsync.errors import SessionNotFoundError
from chatsync.models import Session, utcnow
from chatsync.persistence.repositories.base import BaseRepository, from_json, to_datetime


class SQLSessionRepository(BaseRepository[Session]):
    """
    Sessions in the durable store.

    Writes upsert by id; soft-deleted rows are invisible to ``get`` and
    ``list_active`` but still returned by ``list``.
    """

    table_name = "client_sessions"
    columns = (
        "id",
        "name",
        "creator_id",
        "mcp_server_url",
        "websocket_key",
        "max_players",
        "settings",
        "status",
        "created_at",
        "updated_at",
        "deleted_at",
    )
    _updatable = (
        "name",
        "mcp_server_url",
        "websocket_key",
        "max_players",
        "settings",
        "status",
        "updated_at",
        "deleted_at",
    )

    def _serialize(self, entity: Session) -> tuple:
        return (
            entity.id,
            entity.name,
            entity.creator_id,
            entity.mcp_server_url,
            entity.websocket_key,
            entity.max_players,
            json.dumps(entity.settings),
            entity.status.value,
            entity.created_at,
            entity.updated_at,
            entity.deleted_at,
        )

    def _deserialize(self, row: dict[str, Any]) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            creator_id=row["creator_id"],
            mcp_server_url=row["mcp_server_url"],
            websocket_key=row["websocket_key"],
            max_players=row["max_players"],
            settings=from_json(row["settings"], {}),
            status=row["status"],
            created_at=to_datetime(row["created_at"]),
            updated_at=to_datetime(row["updated_at"]),
            deleted_at=to_datetime(row["deleted_at"]),
        )

    @property
    def _upsert_sql(self) -> str:
        assignments = ", ".join(f"{col} = excluded.{col}" for col in self._updatable)
        return (
            f"INSERT INTO {self.table_name} ({self._column_list}) "
            f"VALUES ({self._placeholders}) "
            f"ON CONFLICT (id) DO UPDATE SET {assignments}"
        )

    async def get(self, session_id: str) -> Session:
        with self._driver_errors("get_session", session_id):
            row = await self.db.fetch_one(
                f"SELECT {self._column_list} FROM {self.table_name} "
                "WHERE id = ? AND deleted_at IS NULL",
                (session_id,),
            )
        if row is None:
            raise SessionNotFoundError(session_id)
        return self._deserialize(row)

    async def list(self) -> list[Session]:
        with self._driver_errors("list_sessions"):
            rows = await self.db.fetch_all(
                f"SELECT {self._column_list} FROM {self.table_name} "
                "ORDER BY created_at, id"
            )
        return [self._deserialize(row) for row in rows]

    async def list_active(self) -> list[Session]:
        with self._driver_errors("list_active_sessions"):
            rows = await self.db.fetch_all(
                f"SELECT {self._column_list} FROM {self.table_name} "
                "WHERE deleted_at IS NULL ORDER BY created_at, id"
            )
        return [self._deserialize(row) for row in rows]

    async def upsert(self, session: Session) -> None:
        with self._driver_errors("upsert_session", session.id):
            await self.db.execute(self._upsert_sql, self._serialize(session))

    async def batch_upsert(self, sessions: list[Session]) -> None:
        if not sessions:
            return
        with self._driver_errors("batch_upsert_sessions"):
            async with self.db.transaction() as conn:
                await conn.execute_many(
                    self._upsert_sql,
                    [self._serialize(s) for s in sessions],
                )

    async def update(self, session: Session) -> None:
        assignments = ", ".join(f"{col} = ?" for col in self._updatable)
        row = dict(zip(self.columns, self._serialize(session)))
        params = tuple(row[col] for col in self._updatable) + (session.id,)
        with self._driver_errors("update_session", session.id):
            count = await self.db.execute(
                f"UPDATE {self.table_name} SET {assignments} WHERE id = ?",
                params,
            )
        if not count:
            raise SessionNotFoundError(session.id, operation="update")

    async def soft_delete(self, session_id: str) -> None:
        now = utcnow()
        with self._driver_errors("delete_session", session_id):
            count = await self.db.execute(
                f"UPDATE {self.table_name} SET deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND deleted_at IS NULL",
                (now, now, session_id),
            )
        if not count:
            raise SessionNotFoundError(session_id, operation="delete")
