"""Reconciliation loop: a fixed pool of workers draining one WorkQueue.

The loop is the only place that decides whether a failed pass is retried.
A pass succeeds exactly when the sync function returns without raising.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.controller.queue import WorkQueue
from nscontroller.errors import FatalStartupError
from nscontroller.observability.logging import get_logger, reconcile_context
from nscontroller.observability.metrics import (
    queue_retries_total,
    reconcile_duration_seconds,
    reconcile_total,
)

_logger = get_logger("controller.loop")

SyncFn = Callable[[str], Awaitable[None]]


class Controller:
    """Level-triggered controller over namespace keys.

    Args:
        name:               Controller name used in logs and metrics.
        sync_fn:            Coroutine reconciling one namespace key.
        cache:              Watch cache the sync function reads from.
        required_kinds:     Kinds that must finish their initial list before
                            any worker starts.
        queue:              Work queue; a fresh one is built when omitted.
        max_retries:        Failed passes allowed per key before it is dropped
                            until the next event. 0 retries forever.
        cache_sync_timeout: Seconds to wait for the initial sync.
    """

    def __init__(
        self,
        name: str,
        sync_fn: SyncFn,
        cache: ResourceCache,
        required_kinds: Iterable[str],
        queue: WorkQueue | None = None,
        max_retries: int = 0,
        cache_sync_timeout: float = 120.0,
    ) -> None:
        self.name = name
        self._sync = sync_fn
        self._cache = cache
        self._required_kinds = tuple(required_kinds)
        self.queue = queue if queue is not None else WorkQueue(name=name)
        self._max_retries = max_retries
        self._cache_sync_timeout = cache_sync_timeout

    def enqueue(self, key: str) -> None:
        """Schedule *key* for reconciliation. Safe to call from event handlers."""
        if key:
            self.queue.add(key)

    async def run(self, workers: int, stop_event: asyncio.Event) -> None:
        """Run *workers* parallel workers until *stop_event* is set.

        Raises FatalStartupError if the cache does not sync in time. On stop,
        no new keys are dequeued and in-flight passes run to completion
        before this returns.
        """
        _logger.info("waiting_for_cache_sync", controller=self.name, kinds=list(self._required_kinds))
        synced = await self._cache.wait_for_sync(self._required_kinds, timeout=self._cache_sync_timeout)
        if not synced:
            missing = [k for k in self._required_kinds if not self._cache.has_synced(k)]
            raise FatalStartupError(f"controller {self.name}: caches did not sync: {missing}")

        _logger.info("controller_started", controller=self.name, workers=workers)
        tasks = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}")
            for i in range(workers)
        ]
        await stop_event.wait()
        _logger.info("controller_stopping", controller=self.name)
        self.queue.shut_down()
        await asyncio.gather(*tasks)
        _logger.info("controller_stopped", controller=self.name)

    async def _worker(self) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.process(key)
            finally:
                self.queue.done(key)

    async def process(self, key: str) -> bool:
        """Run one reconcile pass for *key* and apply the retry policy."""
        with reconcile_context(self.name, key):
            started = time.monotonic()
            try:
                await self._sync(key)
            except Exception as exc:
                reconcile_total.labels(controller=self.name, result="error").inc()
                self._handle_error(key, exc)
                return False
            finally:
                reconcile_duration_seconds.labels(controller=self.name).observe(time.monotonic() - started)
            self.queue.forget(key)
            reconcile_total.labels(controller=self.name, result="success").inc()
            _logger.debug("reconcile_succeeded")
            return True

    def _handle_error(self, key: str, exc: Exception) -> None:
        attempts = self.queue.num_requeues(key)
        if self._max_retries and attempts >= self._max_retries:
            self.queue.forget(key)
            _logger.error("reconcile_dropped", error=str(exc), attempts=attempts + 1)
            return
        delay = self.queue.add_rate_limited(key)
        queue_retries_total.labels(controller=self.name).inc()
        _logger.warning("reconcile_failed", error=str(exc), attempts=attempts + 1, retry_in=delay)
