"""
PostgreSQL durable store backend (asyncpg).
"""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import asyncpg
import structlog

from chatsync.persistence.database import Database, DatabaseConnection, Dialect

logger = structlog.get_logger(__name__)


class PostgreSQLConnection(DatabaseConnection):
    """PostgreSQL connection wrapper implementing DatabaseConnection interface."""

    def __init__(self, conn: "asyncpg.Connection"):
        self._conn = conn

    @staticmethod
    def _convert_placeholders(query: str) -> str:
        """Convert ? placeholders to $1, $2, etc."""
        counter = [0]

        def replacer(match):
            counter[0] += 1
            return f"${counter[0]}"

        return re.sub(r'\?', replacer, query)

    async def execute(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        query = self._convert_placeholders(query)
        result = await self._conn.execute(query, *(params or ()))
        # Extract row count from "INSERT 0 1" style strings
        if result and ' ' in result:
            parts = result.split()
            if parts[-1].isdigit():
                return int(parts[-1])
        return 0

    async def execute_many(
        self,
        query: str,
        params_list: list[tuple],
    ) -> int:
        query = self._convert_placeholders(query)
        await self._conn.executemany(query, params_list)
        return len(params_list)

    async def execute_script(self, script: str) -> None:
        # Without arguments asyncpg uses the simple query protocol,
        # which accepts several statements at once.
        await self._conn.execute(script)

    async def fetch_one(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Optional[dict[str, Any]]:
        query = self._convert_placeholders(query)
        row = await self._conn.fetchrow(query, *(params or ()))
        return dict(row) if row else None

    async def fetch_all(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> list[dict[str, Any]]:
        query = self._convert_placeholders(query)
        rows = await self._conn.fetch(query, *(params or ()))
        return [dict(row) for row in rows]

    async def fetch_value(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        query = self._convert_placeholders(query)
        return await self._conn.fetchval(query, *(params or ()))


class PostgreSQLDatabase(Database):
    """PostgreSQL database backed by an asyncpg pool."""

    dialect = Dialect.POSTGRESQL

    def __init__(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: float = 60.0,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self._pool: Optional["asyncpg.Pool"] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return

        logger.info(
            "Creating PostgreSQL connection pool",
            min_size=self.min_size,
            max_size=self.max_size,
        )
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
        )

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("PostgreSQL connection pool closed")

    def _require(self) -> "asyncpg.Pool":
        if self._pool is None:
            raise RuntimeError("PostgreSQL database is not connected")
        return self._pool

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[DatabaseConnection, None]:
        async with self._require().acquire() as conn:
            yield PostgreSQLConnection(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[DatabaseConnection, None]:
        async with self._require().acquire() as conn:
            async with conn.transaction():
                yield PostgreSQLConnection(conn)
