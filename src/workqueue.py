"""
Work Queue - Deduplicating, per-key serialized queue of reconcile keys.

Modeled on the client-go workqueue:

- a key added several times before a worker picks it up is processed once;
- a key is never handed to two workers at the same time. If it is added
  while being processed it is marked dirty and re-queued when the worker
  calls done();
- failed keys are re-added after a per-key exponential backoff.
"""

import asyncio
import logging
import random
from collections import deque
from typing import Deque, Dict, Hashable, Optional, Set

logger = logging.getLogger(__name__)


class WorkQueue:
    """Asyncio work queue keyed by reconcile key."""

    def __init__(
        self,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 300.0,
        backoff_jitter_factor: float = 0.1,
    ):
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.backoff_jitter_factor = backoff_jitter_factor

        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._timers: Set[asyncio.TimerHandle] = set()
        self._available = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        """Queue a key unless it is already waiting."""
        if self._shutting_down or key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            # Re-queued by done()
            return

        self._queue.append(key)
        self._available.set()

    async def get(self) -> Optional[Hashable]:
        """
        Wait for the next key and mark it as processing.

        Returns:
            The key, or None once the queue is shut down.
        """
        while True:
            if self._shutting_down:
                return None

            if self._queue:
                key = self._queue.popleft()
                self._processing.add(key)
                self._dirty.discard(key)
                return key

            self._available.clear()
            await self._available.wait()

    def done(self, key: Hashable) -> None:
        """Mark a key as finished, re-queueing it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._available.set()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Add a key after ``delay`` seconds."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Re-add a failed key after its backoff delay.

        Returns:
            The delay in seconds that was applied.
        """
        self._failures[key] = self._failures.get(key, 0) + 1
        delay = self.backoff_delay(self._failures[key])
        self.add_after(key, delay)
        return delay

    def backoff_delay(self, failures: int) -> float:
        """Delay for the given number of consecutive failures, with jitter."""
        exponent = min(max(failures - 1, 0), 30)
        delay = min(self.backoff_base_delay * (2**exponent), self.backoff_max_delay)
        jitter = 1 + random.uniform(
            -self.backoff_jitter_factor, self.backoff_jitter_factor
        )
        return delay * jitter

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of a key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def shut_down(self) -> None:
        """Stop accepting keys and release every waiting get()."""
        self._shutting_down = True
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._available.set()
