"""
Deduplicating asyncio work queue.

Keys added while already waiting are coalesced into one entry, and a key
that is being processed is never handed to a second consumer: re-adding it
marks it dirty and it is queued again once ``done()`` is called. Failed keys
can be re-added with per-key exponential backoff, and an optional token
bucket bounds how fast keys leave the queue.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

from ..constants import RECONCILE_BACKOFF_BASE, RECONCILE_BACKOFF_MAX
from .rate_limiter import TokenBucket

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


class WorkQueue(Generic[K]):
    """Work queue with coalescing, backoff and optional rate limiting."""

    def __init__(
        self,
        name: str,
        limiter: TokenBucket | None = None,
        backoff_base: float = RECONCILE_BACKOFF_BASE,
        backoff_max: float = RECONCILE_BACKOFF_MAX,
        on_depth_change: Callable[[int], None] | None = None,
    ):
        """
        Initialize work queue.

        Args:
            name: Queue name used in logs
            limiter: Token bucket consulted before each key is handed out
            backoff_base: First retry delay of add_rate_limited (seconds)
            backoff_max: Upper bound of the retry delay (seconds)
            on_depth_change: Called with the number of waiting keys
        """
        self.name = name
        self._limiter = limiter
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._on_depth_change = on_depth_change

        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._failures: dict[K, int] = {}
        self._delayed: dict[K, asyncio.TimerHandle] = {}
        self._nonempty = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: K) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down:
            return
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            # Replayed by done()
            return
        self._queue.append(key)
        self._nonempty.set()
        self._report_depth()

    def add_after(self, key: K, delay: float) -> None:
        """Queue a key once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        existing = self._delayed.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._delayed[key] = loop.call_later(delay, self._fire_delayed, key)

    def add_rate_limited(self, key: K) -> float:
        """
        Queue a key after an exponential backoff delay.

        Returns:
            The delay applied, in seconds
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._backoff_base * (2**failures), self._backoff_max)
        self.add_after(key, delay)
        return delay

    def forget(self, key: K) -> None:
        """Reset the backoff of a key after it was processed successfully."""
        self._failures.pop(key, None)

    def num_requeues(self, key: K) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> K | None:
        """
        Wait for the next key.

        Returns:
            The key to process, or None once the queue is shut down
        """
        while True:
            if self._shutting_down:
                return None
            if self._queue:
                if self._limiter is not None:
                    await self._limiter.acquire()
                    if self._shutting_down:
                        return None
                    if not self._queue:
                        continue
                key = self._queue.popleft()
                self._dirty.discard(key)
                self._processing.add(key)
                self._report_depth()
                return key
            self._nonempty.clear()
            await self._nonempty.wait()

    def done(self, key: K) -> None:
        """Mark a key as processed; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._nonempty.set()
            self._report_depth()

    def shutdown(self) -> None:
        """Stop handing out keys and wake all waiting consumers."""
        if self._shutting_down:
            return
        logger.debug(f"Shutting down work queue {self.name}")
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._nonempty.set()

    def _fire_delayed(self, key: K) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def _report_depth(self) -> None:
        if self._on_depth_change is not None:
            self._on_depth_change(len(self._queue))
