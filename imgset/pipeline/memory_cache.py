"""Process-lifetime de-duplication of in-flight and completed derivations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class MemoryCache:
    """Maps a request signature to the task producing its result.

    Entries are never evicted on success, so the cache grows for the life of
    the process. A task that fails or is cancelled is dropped as soon as it
    settles, which lets a later equivalent request retry.
    """

    def __init__(self) -> None:
        self._entries: dict[str, asyncio.Future[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> asyncio.Future[Any] | None:
        entry = self._entries.get(key)
        if entry is not None:
            logger.debug("In-memory cache hit")
        return entry

    def put(self, key: str, future: asyncio.Future[Any]) -> None:
        self._entries[key] = future
        future.add_done_callback(lambda done: self._evict_failure(key, done))

    def clear(self) -> None:
        self._entries.clear()

    def _evict_failure(self, key: str, future: asyncio.Future[Any]) -> None:
        if future.cancelled() or future.exception() is not None:
            if self._entries.get(key) is future:
                del self._entries[key]
                logger.debug("Evicted failed derivation from in-memory cache")
