"""Deduplicating, level-triggered work queue of namespace keys.

Three sets carry the whole contract:

    _queue       -- FIFO of keys waiting for a worker (no duplicates)
    _dirty       -- keys that need a pass (pending, or re-triggered mid-pass)
    _processing  -- keys a worker currently holds

``add`` on a pending key is a no-op. ``add`` on a key being processed only
marks it dirty; ``done`` then puts it back exactly once. A key is therefore
never handed to two workers at the same time, and any burst of events for
one key collapses into a single follow-up pass.

Failed keys come back through ``add_rate_limited`` after
``min(base_delay * 2**failures, max_delay)`` seconds until ``forget``
resets their counter.
"""

from __future__ import annotations

import asyncio
from collections import deque

from nscontroller.observability.logging import get_logger
from nscontroller.observability.metrics import queue_depth

_logger = get_logger("controller.queue")


class WorkQueue:
    """Async work queue with per-key exponential backoff."""

    def __init__(self, name: str = "default", base_delay: float = 0.5, max_delay: float = 300.0) -> None:
        self.name = name
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._delayed: dict[str, asyncio.TimerHandle] = {}
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, key: str) -> None:
        """Mark *key* for reconciliation."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._update_depth()
        self._wakeup.set()

    async def get(self) -> str | None:
        """Block until a key is available. Returns None once shut down."""
        while not self._queue and not self._shutting_down:
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutting_down:
            return None
        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        self._update_depth()
        return key

    def done(self, key: str) -> None:
        """Release *key*; re-queue it if it was re-triggered while processing."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._update_depth()
            self._wakeup.set()

    def add_rate_limited(self, key: str) -> float:
        """Re-add *key* after its backoff delay; returns the delay used."""
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = min(self._base_delay * (2**failures), self._max_delay)
        self.add_after(key, delay)
        return delay

    def add_after(self, key: str, delay: float) -> None:
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

    def forget(self, key: str) -> None:
        """Reset the failure counter for *key*."""
        self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def shut_down(self) -> None:
        """Stop handing out keys. Workers blocked in ``get`` return None."""
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._wakeup.set()
        _logger.info("queue_shut_down", queue=self.name, pending=len(self._queue))

    def _fire_delayed(self, key: str) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def _update_depth(self) -> None:
        queue_depth.labels(controller=self.name).set(len(self._queue))
