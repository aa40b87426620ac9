"""
Redis fast store (redis.asyncio).

Key layout, relative to the configured prefix:

- ``session:{id}``       hash of session fields
- ``sessions:all``       set of session ids
- ``msgdata:{sid}``      hash of message id -> JSON body
- ``msg:{sid}``          sorted set of message ids scored by created_at (ms)

Message bodies are written with HSETNX so repeated copies of the same
message are ignored. Every driver failure surfaces as StoreUnavailableError.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from chatsync.errors import (
    MessageNotFoundError,
    PartialItemError,
    SessionNotFoundError,
    StoreUnavailableError,
)
from chatsync.models import Message, MessageRole, Session

logger = structlog.get_logger(__name__)


def create_redis_client(config: Any) -> "aioredis.Redis":
    """Build a client from a FastStoreConfig."""
    return aioredis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password,
        ssl=config.redis_ssl,
        decode_responses=True,
    )


@contextmanager
def _driver_errors(operation: str, session_id: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        logger.warning("Redis command failed", operation=operation, session_id=session_id, error=str(e))
        raise StoreUnavailableError(
            "redis", e, operation=operation, session_id=session_id
        ) from e


def _score(created_at: datetime) -> float:
    return created_at.timestamp() * 1000


def _decode_message(body: str, session_id: str) -> Message:
    try:
        return Message.model_validate_json(body)
    except ValidationError as e:
        raise PartialItemError(
            f"undecodable message body: {e}",
            operation="decode_message",
            session_id=session_id,
            cause=e,
        ) from e


class _RedisKeys:
    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def session(self, session_id: str) -> str:
        return f"{self.prefix}session:{session_id}"

    @property
    def sessions(self) -> str:
        return f"{self.prefix}sessions:all"

    def message_data(self, session_id: str) -> str:
        return f"{self.prefix}msgdata:{session_id}"

    def message_order(self, session_id: str) -> str:
        return f"{self.prefix}msg:{session_id}"


class RedisSessionStore:
    """Sessions stored as Redis hashes with an id index set."""

    def __init__(self, client: "aioredis.Redis", prefix: str = ""):
        self._client = client
        self._keys = _RedisKeys(prefix)

    @staticmethod
    def _encode(session: Session) -> dict[str, str]:
        data = session.model_dump(mode="json", exclude={"deleted_at"})
        data["settings"] = json.dumps(data["settings"])
        data["max_players"] = str(data["max_players"])
        return data

    @staticmethod
    def _decode(data: dict[str, str]) -> Session:
        fields = dict(data)
        try:
            fields["settings"] = json.loads(fields.get("settings") or "{}")
            return Session.model_validate(fields)
        except ValueError as e:  # pydantic ValidationError included
            raise PartialItemError(
                f"undecodable session hash: {e}",
                operation="decode_session",
                session_id=fields.get("id"),
                cause=e,
            ) from e

    async def get(self, session_id: str) -> Session:
        with _driver_errors("get_session", session_id):
            data = await self._client.hgetall(self._keys.session(session_id))
        if not data:
            raise SessionNotFoundError(session_id)
        return self._decode(data)

    async def exists(self, session_id: str) -> bool:
        with _driver_errors("session_exists", session_id):
            return bool(await self._client.exists(self._keys.session(session_id)))

    async def list(self) -> list[Session]:
        with _driver_errors("list_sessions"):
            ids = sorted(await self._client.smembers(self._keys.sessions))
            if not ids:
                return []
            async with self._client.pipeline(transaction=False) as pipe:
                for session_id in ids:
                    pipe.hgetall(self._keys.session(session_id))
                rows = await pipe.execute()

        # Index entries whose hash has expired are skipped.
        sessions = []
        for row in rows:
            if not row:
                continue
            try:
                sessions.append(self._decode(row))
            except PartialItemError as e:
                logger.warning("Skipping undecodable session", session_id=e.session_id, error=e.message)
        sessions.sort(key=lambda s: (s.created_at, s.id))
        return sessions

    async def list_active(self) -> list[Session]:
        return await self.list()

    async def upsert(self, session: Session) -> None:
        await self.batch_upsert([session])

    async def batch_upsert(self, sessions: list[Session]) -> None:
        if not sessions:
            return
        with _driver_errors("upsert_sessions"):
            async with self._client.pipeline(transaction=True) as pipe:
                for session in sessions:
                    key = self._keys.session(session.id)
                    pipe.delete(key)
                    pipe.hset(key, mapping=self._encode(session))
                    pipe.sadd(self._keys.sessions, session.id)
                await pipe.execute()

    async def update(self, session: Session) -> None:
        if not await self.exists(session.id):
            raise SessionNotFoundError(session.id, operation="update")
        await self.upsert(session)


class RedisMessageStore:
    """Messages stored as JSON bodies plus a time-ordered id index."""

    def __init__(self, client: "aioredis.Redis", prefix: str = ""):
        self._client = client
        self._keys = _RedisKeys(prefix)

    async def get(self, session_id: str, message_id: str) -> Message:
        with _driver_errors("get_message", session_id):
            body = await self._client.hget(self._keys.message_data(session_id), message_id)
        if body is None:
            raise MessageNotFoundError(session_id, message_id)
        return _decode_message(body, session_id)

    async def list(
        self,
        session_id: str,
        limit: int = 0,
        offset: int = 0,
    ) -> list[Message]:
        start = max(offset, 0)
        stop = start + limit - 1 if limit > 0 else -1
        with _driver_errors("list_messages", session_id):
            ids = await self._client.zrange(self._keys.message_order(session_id), start, stop)
            if not ids:
                return []
            bodies = await self._client.hmget(self._keys.message_data(session_id), ids)
        missing = [message_id for message_id, body in zip(ids, bodies) if body is None]
        if missing:
            # Paging stops at the first short page, so a gap must not shorten one.
            raise PartialItemError(
                f"{len(missing)} indexed message(s) have no body, first {missing[0]}",
                operation="list_messages",
                session_id=session_id,
            )
        return [_decode_message(body, session_id) for body in bodies]

    async def list_by_role(
        self,
        session_id: str,
        role: MessageRole,
        limit: int = 0,
    ) -> list[Message]:
        matching = [m for m in await self.list(session_id) if m.role == role]
        return matching[:limit] if limit > 0 else matching

    async def create(self, message: Message) -> None:
        await self.batch_create([message])

    async def batch_create(self, messages: list[Message]) -> None:
        if not messages:
            return
        session_ids = sorted({m.session_id for m in messages})
        with _driver_errors("create_messages", session_ids[0]):
            for session_id in session_ids:
                if not await self._client.exists(self._keys.session(session_id)):
                    raise SessionNotFoundError(session_id, operation="create_messages")

            async with self._client.pipeline(transaction=True) as pipe:
                for message in messages:
                    pipe.hsetnx(
                        self._keys.message_data(message.session_id),
                        message.id,
                        message.model_dump_json(),
                    )
                    pipe.zadd(
                        self._keys.message_order(message.session_id),
                        {message.id: _score(message.created_at)},
                        nx=True,
                    )
                await pipe.execute()
