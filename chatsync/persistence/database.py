"""
Durable database abstraction.

Repositories and the schema migrator talk to a Database, which hands out
DatabaseConnection objects either for single statements or wrapped in an
explicit transaction. Queries use ``?`` placeholders; backends convert
them to their native style.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class Dialect(str, Enum):
    """Supported durable store dialects."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConnection(ABC):
    """Abstract database connection interface."""

    @abstractmethod
    async def execute(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        """Execute a query without returning results."""
        pass

    @abstractmethod
    async def execute_many(
        self,
        query: str,
        params_list: list[tuple],
    ) -> int:
        """Execute a query with multiple parameter sets."""
        pass

    @abstractmethod
    async def execute_script(self, script: str) -> None:
        """Execute a multi-statement SQL script in the current transaction."""
        pass

    @abstractmethod
    async def fetch_one(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Optional[dict[str, Any]]:
        """Fetch one row as a dictionary."""
        pass

    @abstractmethod
    async def fetch_all(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> list[dict[str, Any]]:
        """Fetch all rows as dictionaries."""
        pass

    @abstractmethod
    async def fetch_value(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Any:
        """Fetch a single value."""
        pass


class Database(ABC):
    """
    A durable store endpoint.

    ``connection()`` yields a connection in autocommit mode;
    ``transaction()`` yields one inside BEGIN/COMMIT and rolls back if the
    block raises.
    """

    dialect: Dialect

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    def connection(self) -> Any:
        """Async context manager yielding a DatabaseConnection."""
        pass

    @abstractmethod
    def transaction(self) -> Any:
        """Async context manager yielding a DatabaseConnection in a transaction."""
        pass

    async def execute(self, query: str, params: Optional[tuple] = None) -> Any:
        async with self.connection() as conn:
            return await conn.execute(query, params)

    async def fetch_one(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> Optional[dict[str, Any]]:
        async with self.connection() as conn:
            return await conn.fetch_one(query, params)

    async def fetch_all(
        self,
        query: str,
        params: Optional[tuple] = None,
    ) -> list[dict[str, Any]]:
        async with self.connection() as conn:
            return await conn.fetch_all(query, params)

    async def fetch_value(self, query: str, params: Optional[tuple] = None) -> Any:
        async with self.connection() as conn:
            return await conn.fetch_value(query, params)

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def create_database(config: Any) -> Optional[Database]:
    """Build the Database for a DurableStoreConfig (None when disabled)."""
    from chatsync.config import DurableBackend

    if config.backend == DurableBackend.SQLITE:
        from chatsync.persistence.backends.sqlite import SQLiteDatabase
        return SQLiteDatabase(config.sqlite_path, busy_timeout_ms=config.sqlite_busy_timeout_ms)

    if config.backend == DurableBackend.POSTGRESQL:
        from chatsync.persistence.backends.postgres import PostgreSQLDatabase
        return PostgreSQLDatabase(
            config.connection_string,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
            command_timeout=config.command_timeout,
        )

    return None

