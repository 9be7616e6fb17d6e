"""Bounded-parallelism FIFO scheduler for derivation jobs."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, TypeVar

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CONCURRENCY = 10


class ProcessingQueue:
    """Runs at most ``concurrency`` jobs at once, admitting waiters in FIFO order.

    The limit may be changed at any time; raising it wakes queued jobs,
    lowering it never interrupts jobs that are already running.
    """

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self._concurrency = self._validate(concurrency)
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @staticmethod
    def _validate(concurrency: int) -> int:
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ConfigurationError(
                f"concurrency must be a positive integer, got {concurrency!r}"
            )
        return concurrency

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @concurrency.setter
    def concurrency(self, value: int) -> None:
        self._concurrency = self._validate(value)
        self._wake()

    @property
    def active(self) -> int:
        return self._active

    @property
    def pending(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    def add(self, job: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Schedule *job* and return a task resolving to its result."""
        return asyncio.ensure_future(self._run(job))

    async def _run(self, job: Callable[[], Awaitable[T]]) -> T:
        await self._acquire()
        logger.debug(
            "Concurrency: %s, Pending: %s, Active: %s",
            self._concurrency,
            self.pending,
            self._active,
        )
        try:
            return await job()
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._active < self._concurrency and not self._waiters:
            self._active += 1
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # slot was granted just before cancellation
                self._release()
            else:
                self._discard(waiter)
            raise

    def _release(self) -> None:
        self._active -= 1
        self._wake()

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def _wake(self) -> None:
        while self._waiters and self._active < self._concurrency:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            waiter.set_result(None)
