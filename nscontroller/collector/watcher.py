"""List+watch loop that keeps one resource kind mirrored in the cache.

Each watcher owns one background task:

1. list the kind, install the result with ``ResourceCache.replace`` (which
   also marks the kind synced),
2. watch from the list's resourceVersion, applying every event to the cache,
3. when the server closes the stream at ``timeout_seconds``, resume the
   watch from the last seen resourceVersion,
4. on ``410 Gone`` relist from scratch; on any other error back off
   exponentially (1 s doubling to 60 s) and relist.
"""

from __future__ import annotations

import asyncio
from typing import Any

from kubernetes_asyncio import watch  # type: ignore[import-untyped]

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.kube.client import ClusterClient, ListTarget, is_gone
from nscontroller.observability.logging import get_logger
from nscontroller.observability.metrics import watch_restarts_total

_logger = get_logger("collector.watcher")

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 60.0


class _WatchExpired(Exception):
    """The server no longer holds history for our resourceVersion."""


class ResourceWatcher:
    """Mirrors one resource kind into the cache until stopped."""

    def __init__(
        self,
        client: ClusterClient,
        target: ListTarget,
        cache: ResourceCache,
        resync_seconds: int = 300,
    ) -> None:
        self._client = client
        self._target = target
        self._cache = cache
        self._resync_seconds = resync_seconds
        self._task: asyncio.Task[None] | None = None
        cache.register_kind(target.kind)

    @property
    def kind(self) -> str:
        return self._target.kind

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"watch-{self.kind}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                resource_version = await self._list()
                self._cache.reset_reconnect_failures()
                backoff = _INITIAL_BACKOFF
                while True:
                    resource_version = await self._watch(resource_version)
            except _WatchExpired:
                watch_restarts_total.labels(kind=self.kind).inc()
                _logger.info("watch_expired_relisting", kind=self.kind)
            except Exception as exc:
                if is_gone(exc):
                    watch_restarts_total.labels(kind=self.kind).inc()
                    _logger.info("watch_expired_relisting", kind=self.kind)
                    continue
                watch_restarts_total.labels(kind=self.kind).inc()
                self._cache.notify_reconnect_failure()
                _logger.warning("watch_failed", kind=self.kind, error=str(exc), retry_in=backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _MAX_BACKOFF)

    async def _list(self) -> str:
        result = await self._target.list_fn(
            _request_timeout=self._client.request_timeout,
            **self._target.kwargs,
        )
        data = self._client.to_dict(result)
        items: list[dict[str, Any]] = data.get("items") or []
        self._cache.replace(self.kind, items)
        resource_version = str((data.get("metadata") or {}).get("resourceVersion") or "")
        _logger.debug("listed", kind=self.kind, objects=len(items), resource_version=resource_version)
        return resource_version

    async def _watch(self, resource_version: str) -> str:
        """Stream events until the server closes the watch; return the last resourceVersion."""
        w = watch.Watch()
        async with w.stream(
            self._target.list_fn,
            resource_version=resource_version,
            timeout_seconds=self._resync_seconds,
            allow_watch_bookmarks=True,
            _request_timeout=self._resync_seconds + self._client.request_timeout,
            **self._target.kwargs,
        ) as stream:
            async for event in stream:
                resource_version = self._handle_event(event, resource_version)
        return resource_version

    def _handle_event(self, event: dict[str, Any], resource_version: str) -> str:
        event_type = str(event.get("type", ""))
        raw = event.get("raw_object") or {}
        if event_type == "ERROR":
            if raw.get("code") == 410:
                raise _WatchExpired()
            raise RuntimeError(f"watch error: {raw.get('reason')}: {raw.get('message')}")

        latest = str((raw.get("metadata") or {}).get("resourceVersion") or resource_version)
        if event_type != "BOOKMARK":
            self._cache.apply(self.kind, event_type, raw)
        return latest
