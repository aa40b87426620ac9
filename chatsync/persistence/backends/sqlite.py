"""
SQLite durable store backend (aiosqlite).

A single connection is opened in autocommit mode and transactions are
issued explicitly, so a migration script and its history row commit or
roll back together. Access is serialized with an asyncio lock since
SQLite allows one writer at a time.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, Optional, Union

import aiosqlite
import structlog

from chatsync.persistence.database import Database, DatabaseConnection, Dialect

logger = structlog.get_logger(__name__)


def split_sql_statements(script: str) -> list[str]:
    """Split a script into complete statements, dropping comment-only lines."""
    lines = [
        line for line in script.splitlines()
        if not line.strip().startswith("--")
    ]
    statements: list[str] = []
    buffer = ""
    for piece in "\n".join(lines).split(";"):
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            if statement.rstrip(";").strip():
                statements.append(statement)
            buffer = ""
    return statements


def _adapt(params: Optional[tuple]) -> tuple:
    if not params:
        return ()
    return tuple(
        p.isoformat(timespec="microseconds") if isinstance(p, datetime) else p
        for p in params
    )


class SQLiteConnection(DatabaseConnection):
    """SQLite connection wrapper implementing DatabaseConnection interface."""

    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    @staticmethod
    def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict[str, Any]:
        """Convert row to dictionary."""
        return {
            col[0]: row[idx]
            for idx, col in enumerate(cursor.description)
        }

    async def execute(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        cursor = await self._conn.execute(query, _adapt(params))
        return cursor.rowcount

    async def execute_many(
        self,
        query: str,
        params_list: list[tuple],
    ) -> int:
        await self._conn.executemany(query, [_adapt(p) for p in params_list])
        return len(params_list)

    async def execute_script(self, script: str) -> None:
        # executescript() would commit the surrounding transaction.
        for statement in split_sql_statements(script):
            await self._conn.execute(statement)

    async def fetch_one(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Optional[dict[str, Any]]:
        cursor = await self._conn.execute(query, _adapt(params))
        return await cursor.fetchone()

    async def fetch_all(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> list[dict[str, Any]]:
        cursor = await self._conn.execute(query, _adapt(params))
        return list(await cursor.fetchall())

    async def fetch_value(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        row = await self.fetch_one(query, params)
        return next(iter(row.values())) if row else None


class SQLiteDatabase(Database):
    """SQLite database backed by one aiosqlite connection."""

    dialect = Dialect.SQLITE

    def __init__(
        self,
        path: Union[str, Path],
        busy_timeout_ms: int = 5000,
        journal_mode: str = "WAL",
    ):
        self.path = Path(path) if str(path) != ":memory:" else path
        self.busy_timeout_ms = busy_timeout_ms
        self.journal_mode = journal_mode
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        if self._conn is not None:
            return

        logger.info("Connecting to SQLite database", path=str(self.path))
        if isinstance(self.path, Path):
            self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000,
            isolation_level=None,
        )
        conn.row_factory = SQLiteConnection._dict_factory

        pragmas = [
            f"PRAGMA busy_timeout = {self.busy_timeout_ms}",
            "PRAGMA foreign_keys = ON",
        ]
        if isinstance(self.path, Path):
            pragmas.append(f"PRAGMA journal_mode = {self.journal_mode}")
        for pragma in pragmas:
            await conn.execute(pragma)

        self._conn = conn

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("SQLite connection closed", path=str(self.path))

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SQLite database is not connected")
        return self._conn

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[DatabaseConnection, None]:
        async with self._lock:
            yield SQLiteConnection(self._require())

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[DatabaseConnection, None]:
        async with self._lock:
            conn = self._require()
            await conn.execute("BEGIN")
            try:
                yield SQLiteConnection(conn)
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")
