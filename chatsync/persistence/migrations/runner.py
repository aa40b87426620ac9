"""
chatsync schema migrator

Versioned SQL migrations for the durable store:
- Units discovered from ``NNNNNN_name.up.sql`` / ``.down.sql`` files
- Version tracking in ``schema_migrations``
- One transaction per unit (script and history row together)
- Strictly ascending apply, newest-first rollback
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from importlib import resources
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import structlog

from chatsync.errors import MigrationError
from chatsync.models import utcnow
from chatsync.persistence.database import Database, Dialect
from chatsync.persistence.repositories.base import to_datetime

logger = structlog.get_logger(__name__)

NO_VERSION = 0

_UNIT_FILE = re.compile(r"^(?P<version>\d+)_(?P<name>.+)\.(?P<direction>up|down)\.sql$")


@dataclass
class MigrationUnit:
    """One versioned schema change."""
    version: int
    name: str
    up_sql: Optional[str] = None
    down_sql: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.version:06d}_{self.name}"


@dataclass
class MigrationStatus:
    """A known unit and whether it is applied."""
    version: int
    name: str
    applied: bool
    applied_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "name": self.name,
            "applied": self.applied,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


def build_units(files: Iterable[tuple[str, str]]) -> list[MigrationUnit]:
    """Group ``(file name, sql)`` pairs into units ordered by version."""
    units: dict[int, MigrationUnit] = {}
    for filename, sql in files:
        match = _UNIT_FILE.match(filename)
        if not match:
            continue
        version = int(match["version"])
        name = match["name"]
        unit = units.setdefault(version, MigrationUnit(version=version, name=name))
        if unit.name != name:
            raise MigrationError(
                f"duplicate version: {unit.label} and {version:06d}_{name}",
                version=version,
            )
        if match["direction"] == "up":
            unit.up_sql = sql
        else:
            unit.down_sql = sql

    for unit in units.values():
        if unit.up_sql is None:
            raise MigrationError(f"{unit.label} has no up script", version=unit.version)
        if unit.version <= NO_VERSION:
            raise MigrationError(f"{unit.label} must have a positive version", version=unit.version)

    return [units[v] for v in sorted(units)]


class MigrationSource(ABC):
    """Supplies the known migration units."""

    @abstractmethod
    def load(self) -> list[MigrationUnit]:
        pass


class DirectoryMigrationSource(MigrationSource):
    """Units read from SQL files in a directory."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> list[MigrationUnit]:
        if not self.path.is_dir():
            logger.warning("Migrations directory does not exist", path=str(self.path))
            return []
        return build_units(
            (p.name, p.read_text(encoding="utf-8"))
            for p in sorted(self.path.glob("*.sql"))
        )


class PackagedMigrationSource(MigrationSource):
    """Units shipped with chatsync for one dialect."""

    def __init__(self, dialect: Union[str, Dialect]):
        self.dialect = Dialect(dialect)

    def load(self) -> list[MigrationUnit]:
        root = resources.files("chatsync.persistence.migrations") / "sql" / self.dialect.value
        return build_units(
            (entry.name, entry.read_text(encoding="utf-8"))
            for entry in root.iterdir()
            if entry.name.endswith(".sql")
        )


class SchemaMigrator:
    """
    Applies and reverts migration units against a Database.

    The applied set is always a contiguous ascending prefix of the known
    versions: ``up`` refuses to run a pending unit older than the newest
    applied one, and ``down`` only ever reverts the newest.
    """

    MIGRATIONS_TABLE = "schema_migrations"

    def __init__(self, db: Database, source: MigrationSource):
        self.db = db
        self.source = source
        self._initialized = False

    async def initialize(self) -> None:
        """Create the history table if it does not exist."""
        timestamp_type = "TIMESTAMPTZ" if self.db.dialect == Dialect.POSTGRESQL else "TIMESTAMP"
        await self.db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.MIGRATIONS_TABLE} (
                version BIGINT PRIMARY KEY,
                applied_at {timestamp_type} NOT NULL
            )
        """)
        self._initialized = True

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _applied(self) -> dict[int, Optional[datetime]]:
        await self._ensure_initialized()
        rows = await self.db.fetch_all(
            f"SELECT version, applied_at FROM {self.MIGRATIONS_TABLE} ORDER BY version"
        )
        return {int(row["version"]): to_datetime(row["applied_at"]) for row in rows}

    def _units(self) -> dict[int, MigrationUnit]:
        return {unit.version: unit for unit in self.source.load()}

    async def status(self) -> list[MigrationStatus]:
        """Every known unit, ascending, tagged applied or pending."""
        applied = await self._applied()
        return [
            MigrationStatus(
                version=unit.version,
                name=unit.name,
                applied=unit.version in applied,
                applied_at=applied.get(unit.version),
            )
            for unit in self._units().values()
        ]

    async def get_current_version(self) -> int:
        """Highest applied version, or NO_VERSION when nothing is applied."""
        applied = await self._applied()
        return max(applied) if applied else NO_VERSION

    async def get_latest_version(self) -> int:
        units = self._units()
        return max(units) if units else NO_VERSION

    async def is_up_to_date(self) -> bool:
        return await self.get_current_version() == await self.get_latest_version()

    async def up(self) -> list[MigrationStatus]:
        """
        Apply every pending unit in ascending order.

        Each unit commits on its own; on failure the failing unit is rolled
        back, earlier units stay applied and MigrationError is raised.
        """
        units = self._units()
        applied = await self._applied()

        unknown = sorted(set(applied) - set(units))
        if unknown:
            raise MigrationError(
                f"applied version {unknown[0]:06d} is not a known migration",
                version=unknown[0],
            )

        pending = [units[v] for v in sorted(set(units) - set(applied))]
        if not pending:
            logger.info("No pending migrations", version=max(applied, default=NO_VERSION))
            return []

        newest_applied = max(applied, default=NO_VERSION)
        if pending[0].version < newest_applied:
            raise MigrationError(
                f"{pending[0].label} is older than applied version {newest_applied:06d}",
                version=pending[0].version,
            )

        logger.info("Found pending migrations", count=len(pending))

        results = []
        for unit in pending:
            applied_at = utcnow()
            try:
                async with self.db.transaction() as conn:
                    await conn.execute_script(unit.up_sql)
                    await conn.execute(
                        f"INSERT INTO {self.MIGRATIONS_TABLE} (version, applied_at) VALUES (?, ?)",
                        (unit.version, applied_at),
                    )
            except Exception as e:
                logger.error("Migration failed", version=unit.version, name=unit.name, error=str(e))
                raise MigrationError(f"apply {unit.label} failed: {e}", version=unit.version, cause=e) from e

            logger.info("Applied migration", version=unit.version, name=unit.name)
            results.append(MigrationStatus(unit.version, unit.name, True, applied_at))

        return results

    async def down(self) -> MigrationStatus:
        """Revert the most recently applied unit."""
        applied = await self._applied()
        if not applied:
            raise MigrationError("no applied migration to revert")

        version = max(applied)
        unit = self._units().get(version)
        if unit is None:
            raise MigrationError(f"applied version {version:06d} is not a known migration", version=version)
        if unit.down_sql is None:
            raise MigrationError(f"{unit.label} has no down script", version=version)

        try:
            async with self.db.transaction() as conn:
                await conn.execute_script(unit.down_sql)
                await conn.execute(
                    f"DELETE FROM {self.MIGRATIONS_TABLE} WHERE version = ?",
                    (version,),
                )
        except Exception as e:
            logger.error("Migration rollback failed", version=version, name=unit.name, error=str(e))
            raise MigrationError(f"revert {unit.label} failed: {e}", version=version, cause=e) from e

        logger.info("Rolled back migration", version=version, name=unit.name)
        return MigrationStatus(unit.version, unit.name, False)
