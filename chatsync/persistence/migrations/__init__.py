"""
Durable schema migrations.
"""

from chatsync.persistence.migrations.runner import (
    NO_VERSION,
    DirectoryMigrationSource,
    MigrationSource,
    MigrationStatus,
    MigrationUnit,
    PackagedMigrationSource,
    SchemaMigrator,
)

__all__ = [
    "NO_VERSION",
    "DirectoryMigrationSource",
    "MigrationSource",
    "MigrationStatus",
    "MigrationUnit",
    "PackagedMigrationSource",
    "SchemaMigrator",
]
