"""De-duplicated, queued entry point for derivations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping

from ..codec.engine import PillowCodec
from ..fetch.remote import RemoteFetchQueue
from ..io.models import FullStatsPlan, ImageOptions, resolve_options
from .memory_cache import MemoryCache
from .orchestrator import ImageDerivation
from .queue import DEFAULT_CONCURRENCY, ProcessingQueue

logger = logging.getLogger(__name__)


class DerivationService:
    """Admits derivation requests, collapsing equivalent ones onto a single task.

    Every collaborator can be injected; omitted ones get fresh instances
    (the codec and fetch queue fall back to the process defaults).
    """

    def __init__(
        self,
        *,
        codec: PillowCodec | Any = None,
        queue: ProcessingQueue | None = None,
        cache: MemoryCache | None = None,
        fetch_queue: RemoteFetchQueue | None = None,
        size_estimator: Callable[[bytes], int] | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.codec = codec
        self.queue = queue or ProcessingQueue(concurrency)
        self.cache = cache if cache is not None else MemoryCache()
        self.fetch_queue = fetch_queue
        self.size_estimator = size_estimator

    @property
    def concurrency(self) -> int:
        return self.queue.concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        self.queue.concurrency = value

    def create_derivation(
        self, src: Any, options: ImageOptions | Mapping[str, Any] | None = None, **overrides: Any
    ) -> ImageDerivation:
        return ImageDerivation(
            src,
            resolve_options(options, **overrides),
            codec=self.codec,
            fetch_queue=self.fetch_queue,
            size_estimator=self.size_estimator,
        )

    def derive(
        self, src: Any, options: ImageOptions | Mapping[str, Any] | None = None, **overrides: Any
    ) -> asyncio.Future[FullStatsPlan]:
        """Schedule a derivation and return the task producing its grouped stats.

        Must be called with a running event loop. Equivalent requests made
        while ``use_cache`` is on share one task, even after it completes.
        """
        derivation = self.create_derivation(src, options, **overrides)

        key: str | None = None
        if derivation.options.use_cache:
            key = derivation.signature()
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        logger.debug("In-memory cache miss for %s", derivation.describe_src())
        task = self.queue.add(derivation.run)
        if key is not None:
            self.cache.put(key, task)
        return task


default_service = DerivationService()
