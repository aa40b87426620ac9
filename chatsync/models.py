"""
Domain models shared by every store adapter.

Sessions and messages are owned by the chat application; the
synchronization engine only copies them between stores.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant."""
    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Session(BaseModel):
    """A chat session (campaign) with its settings blob."""
    id: str = Field(default_factory=_new_id)
    name: str = ""
    creator_id: str = ""
    mcp_server_url: str = ""
    websocket_key: str = ""
    max_players: int = 4
    settings: dict[str, Any] = Field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE and self.deleted_at is None

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def archive(self) -> None:
        self.status = SessionStatus.ARCHIVED
        self.updated_at = utcnow()

    def update_settings(self, settings: dict[str, Any]) -> None:
        self.settings.update(settings)
        self.updated_at = utcnow()


class Message(BaseModel):
    """One append-only entry in a session's history."""
    id: str = Field(default_factory=_new_id)
    session_id: str
    role: MessageRole
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    player_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)
