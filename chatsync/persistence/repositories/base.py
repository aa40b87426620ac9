"""
Base repository for the durable store.

Subclasses map one domain model onto one table. Driver failures from
either backend are translated into StoreUnavailableError here so the
sync services only ever see the chatsync error taxonomy.
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generic, Iterator, Optional, TypeVar

import asyncpg
import structlog

from chatsync.errors import StoreUnavailableError
from chatsync.models import ensure_utc
from chatsync.persistence.database import Database

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DRIVER_ERRORS = (
    sqlite3.Error,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)


def to_datetime(value: Any) -> Optional[datetime]:
    """Timestamps come back as ISO text from SQLite and datetimes from asyncpg."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return ensure_utc(value)


def from_json(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class BaseRepository(ABC, Generic[T]):
    """Table-backed repository over a Database."""

    table_name: str = ""
    columns: tuple[str, ...] = ()

    def __init__(self, db: Database):
        self.db = db

    @abstractmethod
    def _serialize(self, entity: T) -> tuple:
        """Entity to a parameter tuple ordered like ``columns``."""
        pass

    @abstractmethod
    def _deserialize(self, row: dict[str, Any]) -> T:
        """Database row to entity."""
        pass

    @property
    def _column_list(self) -> str:
        return ", ".join(self.columns)

    @property
    def _placeholders(self) -> str:
        return ", ".join("?" for _ in self.columns)

    @contextmanager
    def _driver_errors(
        self,
        operation: str,
        session_id: Optional[str] = None,
    ) -> Iterator[None]:
        try:
            yield
        except DRIVER_ERRORS as e:
            logger.warning(
                "Durable store error",
                table=self.table_name,
                operation=operation,
                session_id=session_id,
                error=str(e),
            )
            raise StoreUnavailableError(
                self.db.dialect.value, e, operation=operation, session_id=session_id
            ) from e
