"""
Paged message iteration shared by the sync services.
"""

from __future__ import annotations

from typing import AsyncIterator

from chatsync.models import Message
from chatsync.persistence.interfaces import MessageReader


async def iter_message_pages(
    reader: MessageReader,
    session_id: str,
    page_size: int,
) -> AsyncIterator[tuple[int, list[Message]]]:
    """
    Yield ``(offset, page)`` pairs in ascending message order.

    Iteration stops after the first page shorter than ``page_size``, so a
    history whose length is an exact multiple of the page size costs one
    extra, empty read. Empty pages are never yielded.
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    offset = 0
    while True:
        page = await reader.list(session_id, limit=page_size, offset=offset)
        if page:
            yield offset, page
        if len(page) < page_size:
            return
        offset += len(page)
