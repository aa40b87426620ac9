"""
chatsync configuration

Type-safe settings loaded from environment variables (prefix CHATSYNC_,
nested with ``__``, e.g. CHATSYNC_SYNC__INTERVAL_SECONDS=60) or from a
JSON file.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FastBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class DurableBackend(str, Enum):
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    NONE = "none"


class TriggerKind(str, Enum):
    INTERVAL = "interval"
    MANUAL = "manual"


class FastStoreConfig(BaseModel):
    """Configuration for the fast (primary) store."""
    backend: FastBackend = FastBackend.MEMORY
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    redis_prefix: str = "chatsync:"


class DurableStoreConfig(BaseModel):
    """Configuration for the durable relational store."""
    backend: DurableBackend = DurableBackend.SQLITE
    sqlite_path: Path = Path("./data/chatsync.db")
    sqlite_busy_timeout_ms: int = 5000

    postgres_dsn: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "chatsync"
    postgres_user: str = "chatsync"
    postgres_password: str = ""
    pool_min_size: int = 2
    pool_max_size: int = 10
    command_timeout: float = 60.0

    @field_validator("sqlite_path", mode="before")
    @classmethod
    def ensure_path(cls, v: Any) -> Path:
        if isinstance(v, str):
            return Path(v)
        return v

    @property
    def enabled(self) -> bool:
        return self.backend != DurableBackend.NONE

    @property
    def connection_string(self) -> str:
        """PostgreSQL DSN, built from parts when not given explicitly."""
        if self.postgres_dsn:
            return self.postgres_dsn
        auth = quote(self.postgres_user, safe="")
        if self.postgres_password:
            auth += ":" + quote(self.postgres_password, safe="")
        return (
            f"postgresql://{auth}@{self.postgres_host}:{self.postgres_port}"
            f"/{self.postgres_database}"
        )


class SyncConfig(BaseModel):
    """Background synchronization settings."""
    trigger: TriggerKind = TriggerKind.INTERVAL
    interval_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    page_size: int = Field(default=100, gt=0)
    serialize_operations: bool = False


class MigrationSettings(BaseModel):
    """Schema migration settings."""
    migrations_dir: Optional[Path] = None
    auto_migrate: bool = False


class ChatSyncConfig(BaseSettings):
    """
    Main chatsync configuration.

    Environment variables are prefixed with CHATSYNC_
    (e.g. CHATSYNC_DURABLE_STORE__BACKEND=postgresql).
    """

    fast_store: FastStoreConfig = Field(default_factory=FastStoreConfig)
    durable_store: DurableStoreConfig = Field(default_factory=DurableStoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)

    log_level: LogLevel = LogLevel.INFO
    log_format: Literal["json", "console"] = "json"

    model_config = {
        "env_prefix": "CHATSYNC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    def validate_backends(self) -> list[str]:
        """Return configuration problems that pydantic cannot catch alone."""
        errors = []
        if self.sync.poll_interval_seconds > self.sync.interval_seconds and self.sync.trigger == TriggerKind.INTERVAL:
            errors.append("sync.poll_interval_seconds must not exceed sync.interval_seconds")
        if self.durable_store.pool_min_size > self.durable_store.pool_max_size:
            errors.append("durable_store.pool_min_size must not exceed pool_max_size")
        return errors

    @classmethod
    def from_file(cls, config_path: Path) -> "ChatSyncConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Global configuration instance (lazy loaded)
_config: Optional[ChatSyncConfig] = None


def get_config() -> ChatSyncConfig:
    """Get the global chatsync configuration instance."""
    global _config
    if _config is None:
        _config = ChatSyncConfig()
    return _config


def set_config(config: ChatSyncConfig) -> None:
    """Set the global chatsync configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
