"""In-memory watch cache for the resource kinds the controllers consume.

Storage layout is ``kind -> namespace -> name -> raw object dict``, with
cluster-scoped kinds stored under the empty namespace. Objects enter only
through ``replace()`` (a full list result) and ``apply()`` (a single watch
event); both dispatch add/update/delete notifications to the handlers
registered for that kind.

Reads return deep copies. Synthesizers and the converger may therefore
change what they get back without touching cache state; the cache only
moves forward when the watch stream confirms a write.

Readiness follows a 4-state model:
    WARMING          -- no registered kind has completed its initial list
    PARTIALLY_READY  -- some kinds synced, others still listing
    READY            -- every registered kind synced
    DEGRADED         -- synced, but watch reconnects keep failing
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from nscontroller.models.resources import CacheReadiness
from nscontroller.observability.logging import get_logger

_logger = get_logger("cache")

_RECONNECT_FAILURE_THRESHOLD = 3

AddHandler = Callable[[dict[str, Any]], None]
UpdateHandler = Callable[[dict[str, Any], dict[str, Any]], None]
DeleteHandler = Callable[[dict[str, Any]], None]


@dataclass
class ResourceEventHandler:
    """Callbacks invoked after the cache has applied a change."""

    on_add: AddHandler | None = None
    on_update: UpdateHandler | None = None
    on_delete: DeleteHandler | None = None


def _key(raw: dict[str, Any]) -> tuple[str, str]:
    metadata = raw.get("metadata") or {}
    return str(metadata.get("namespace") or ""), str(metadata.get("name") or "")


class ResourceCache:
    """Eventually-consistent mirror of cluster objects, fed by watchers."""

    def __init__(self) -> None:
        self._store: dict[str, dict[str, dict[str, dict[str, Any]]]] = {}
        self._handlers: dict[str, list[ResourceEventHandler]] = {}
        self._all_kinds: set[str] = set()
        self._ready_kinds: set[str] = set()
        self._synced_events: dict[str, asyncio.Event] = {}
        self._reconnect_failures = 0
        self._readiness = CacheReadiness.WARMING

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_kind(self, kind: str) -> None:
        """Declare that *kind* will be populated; readiness waits for it."""
        self._all_kinds.add(kind)
        self._store.setdefault(kind, {})

    def add_event_handler(self, kind: str, handler: ResourceEventHandler) -> None:
        self.register_kind(kind)
        self._handlers.setdefault(kind, []).append(handler)

    # ------------------------------------------------------------------
    # Writes (watchers only)
    # ------------------------------------------------------------------

    def replace(self, kind: str, items: Iterable[dict[str, Any]]) -> None:
        """Install a full list result for *kind* and mark it synced.

        Differences against the previous contents are dispatched as
        add/update/delete notifications, so a relist after a watch gap
        looks to handlers like the events that were missed.
        """
        self.register_kind(kind)
        previous = self._store.get(kind, {})
        fresh: dict[str, dict[str, dict[str, Any]]] = {}
        for raw in items:
            ns, name = _key(raw)
            if name:
                fresh.setdefault(ns, {})[name] = raw
        self._store[kind] = fresh

        for ns, names in fresh.items():
            for name, raw in names.items():
                old = previous.get(ns, {}).get(name)
                if old is None:
                    self._dispatch_add(kind, raw)
                else:
                    self._dispatch_update(kind, old, raw)
        for ns, names in previous.items():
            for name, old in names.items():
                if name not in fresh.get(ns, {}):
                    self._dispatch_delete(kind, old)

        self._mark_synced(kind)
        _logger.debug("cache_replaced", kind=kind, objects=sum(len(v) for v in fresh.values()))

    def apply(self, kind: str, event_type: str, raw: dict[str, Any]) -> None:
        """Apply one watch event (``ADDED`` / ``MODIFIED`` / ``DELETED``)."""
        ns, name = _key(raw)
        if not name:
            return
        if event_type in ("ADDED", "MODIFIED"):
            old = self.update(kind, ns, name, raw)
            if old is None:
                self._dispatch_add(kind, raw)
            else:
                self._dispatch_update(kind, old, raw)
        elif event_type == "DELETED":
            old = self.remove(kind, ns, name)
            self._dispatch_delete(kind, old if old is not None else raw)

    def update(self, kind: str, namespace: str, name: str, raw: dict[str, Any]) -> dict[str, Any] | None:
        """Store *raw* and return the object it replaced, if any."""
        bucket = self._store.setdefault(kind, {}).setdefault(namespace, {})
        old = bucket.get(name)
        bucket[name] = raw
        return old

    def remove(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        bucket = self._store.get(kind, {}).get(namespace)
        if not bucket:
            return None
        old = bucket.pop(name, None)
        if not bucket:
            del self._store[kind][namespace]
        return old

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: str, name: str) -> dict[str, Any] | None:
        raw = self._store.get(kind, {}).get(namespace, {}).get(name)
        return copy.deepcopy(raw) if raw is not None else None

    def list(self, kind: str, namespace: str | None = None) -> list[dict[str, Any]]:
        """List cached objects of *kind*, optionally scoped to one namespace.

        Results are sorted by (namespace, name) so callers see a stable order.
        """
        buckets = self._store.get(kind, {})
        if namespace is not None:
            selected = [(namespace, buckets.get(namespace, {}))]
        else:
            selected = sorted(buckets.items())
        return [copy.deepcopy(raw) for _ns, names in selected for _name, raw in sorted(names.items())]

    def keys(self, kind: str) -> list[tuple[str, str]]:
        return sorted((ns, name) for ns, names in self._store.get(kind, {}).items() for name in names)

    # ------------------------------------------------------------------
    # Sync and readiness
    # ------------------------------------------------------------------

    def has_synced(self, kind: str) -> bool:
        return kind in self._ready_kinds

    async def wait_for_sync(self, kinds: Iterable[str], timeout: float) -> bool:
        """Wait until every kind in *kinds* has completed its initial list.

        Returns False when *timeout* elapses first.
        """
        waiters = [self._synced_event(kind).wait() for kind in kinds]
        try:
            await asyncio.wait_for(asyncio.gather(*waiters), timeout=timeout)
        except TimeoutError:
            return False
        return True

    def readiness(self) -> CacheReadiness:
        self._recompute_readiness()
        return self._readiness

    def notify_reconnect_failure(self) -> None:
        self._reconnect_failures += 1

    def reset_reconnect_failures(self) -> None:
        self._reconnect_failures = 0

    def _recompute_readiness(self) -> None:
        if not self._all_kinds or not self._ready_kinds:
            self._readiness = CacheReadiness.WARMING
        elif not self._all_kinds <= self._ready_kinds:
            self._readiness = CacheReadiness.PARTIALLY_READY
        elif self._reconnect_failures > _RECONNECT_FAILURE_THRESHOLD:
            self._readiness = CacheReadiness.DEGRADED
        else:
            self._readiness = CacheReadiness.READY

    def _synced_event(self, kind: str) -> asyncio.Event:
        event = self._synced_events.get(kind)
        if event is None:
            event = asyncio.Event()
            if kind in self._ready_kinds:
                event.set()
            self._synced_events[kind] = event
        return event

    def _mark_synced(self, kind: str) -> None:
        if kind not in self._ready_kinds:
            self._ready_kinds.add(kind)
            _logger.info("cache_kind_synced", kind=kind)
        event = self._synced_events.get(kind)
        if event is not None:
            event.set()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch_add(self, kind: str, raw: dict[str, Any]) -> None:
        for handler in self._handlers.get(kind, []):
            if handler.on_add is not None:
                self._call(kind, "add", handler.on_add, raw)

    def _dispatch_update(self, kind: str, old: dict[str, Any], new: dict[str, Any]) -> None:
        for handler in self._handlers.get(kind, []):
            if handler.on_update is not None:
                self._call(kind, "update", handler.on_update, old, new)

    def _dispatch_delete(self, kind: str, raw: dict[str, Any]) -> None:
        for handler in self._handlers.get(kind, []):
            if handler.on_delete is not None:
                self._call(kind, "delete", handler.on_delete, raw)

    @staticmethod
    def _call(kind: str, event: str, fn: Callable[..., None], *args: dict[str, Any]) -> None:
        # A broken handler must not stall the watch stream for other consumers.
        try:
            fn(*args)
        except Exception as exc:
            _logger.error("event_handler_failed", kind=kind, event=event, error=str(exc))
