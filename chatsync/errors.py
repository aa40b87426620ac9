"""
chatsync error taxonomy

Every failure raised by the synchronization engine derives from
SyncError and carries the operation and session it happened in, so
callers can render a useful one-line message without a traceback.
"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base exception for persistence synchronization errors."""

    code = "sync_error"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        session_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.operation = operation
        self.session_id = session_id
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        if self.operation:
            parts.append(self.operation)
        if self.session_id:
            parts.append(f"session {self.session_id}")
        parts.append(self.message)
        return ": ".join(parts)

    def with_context(
        self,
        operation: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> "SyncError":
        """Fill in missing context and return self for re-raising."""
        if operation and not self.operation:
            self.operation = operation
        if session_id and not self.session_id:
            self.session_id = session_id
        self.args = (self._render(),)
        return self

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "session_id": self.session_id,
        }


class NotFoundError(SyncError):
    """The requested record is absent from the store."""

    code = "not_found"


class SessionNotFoundError(NotFoundError):
    """Session does not exist (or is soft-deleted in the durable store)."""

    def __init__(self, session_id: str, operation: Optional[str] = None):
        super().__init__(
            "session not found",
            operation=operation,
            session_id=session_id,
        )


class MessageNotFoundError(NotFoundError):
    """Message does not exist in the given session."""

    def __init__(
        self,
        session_id: str,
        message_id: str,
        operation: Optional[str] = None,
    ):
        self.message_id = message_id
        super().__init__(
            f"message {message_id} not found",
            operation=operation,
            session_id=session_id,
        )


class ConnectivityError(SyncError):
    """A store could not be reached or answered with a driver failure."""

    code = "connectivity"


class StoreUnavailableError(ConnectivityError):
    """Raised by store adapters when the underlying driver fails."""

    def __init__(
        self,
        store: str,
        cause: BaseException,
        operation: Optional[str] = None,
        session_id: Optional[str] = None,
    ):
        self.store = store
        super().__init__(
            f"{store} unavailable: {cause}",
            operation=operation,
            session_id=session_id,
            cause=cause,
        )


class PartialItemError(SyncError):
    """A single session or message page failed to copy."""

    code = "item_failed"


def as_item_failure(
    error: SyncError,
    operation: str,
    session_id: Optional[str] = None,
) -> SyncError:
    """
    Annotate an error raised while copying one item.

    Not-found and connectivity errors keep their type so callers can tell
    them apart; anything else becomes a PartialItemError.
    """
    if isinstance(error, (NotFoundError, ConnectivityError, PartialItemError)):
        return error.with_context(operation=operation, session_id=session_id)
    return PartialItemError(
        error.message,
        operation=operation,
        session_id=session_id or error.session_id,
        cause=error,
    )


class MigrationError(SyncError):
    """A schema migration could not be applied or reverted."""

    code = "migration_failed"

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        self.version = version
        operation = "migrate" if version is None else f"migrate {version:06d}"
        super().__init__(message, operation=operation, cause=cause)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["version"] = self.version
        return data
