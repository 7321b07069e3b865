"""Notification adapters: map cache events to namespace keys.

Every adapter ends in ``Controller.enqueue``. Update events whose
resourceVersion did not change (periodic relists replaying the same object)
are dropped here, before they reach the queue.
"""

from __future__ import annotations

from typing import Any

from nscontroller.cache.resource_cache import ResourceCache, ResourceEventHandler
from nscontroller.controller.loop import Controller
from nscontroller.kube.client import APISERVER_SERVICE, NAMESPACE
from nscontroller.observability.logging import get_logger

_logger = get_logger("collector.handlers")


def _meta(raw: dict[str, Any]) -> dict[str, Any]:
    return raw.get("metadata") or {}


def version_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    return _meta(old).get("resourceVersion") != _meta(new).get("resourceVersion")


def namespace_handler(controller: Controller) -> ResourceEventHandler:
    """Enqueue a namespace whenever it is created or changes."""

    def on_add(raw: dict[str, Any]) -> None:
        controller.enqueue(str(_meta(raw).get("name", "")))

    def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
        if version_changed(old, new):
            controller.enqueue(str(_meta(new).get("name", "")))

    return ResourceEventHandler(on_add=on_add, on_update=on_update)


def dependent_handler(controller: Controller, cache: ResourceCache, kind: str) -> ResourceEventHandler:
    """Enqueue the owning namespace when a Pod or PVC appears or changes."""

    def enqueue_owner(raw: dict[str, Any], reason: str) -> None:
        metadata = _meta(raw)
        namespace = str(metadata.get("namespace") or "")
        name = str(metadata.get("name") or "")
        if cache.get(NAMESPACE, "", namespace) is None:
            _logger.error("owning_namespace_not_found", kind=kind, name=name, namespace=namespace)
            return
        _logger.debug("namespace_queued", namespace=namespace, trigger=f"{kind}/{name}", reason=reason)
        controller.enqueue(namespace)

    def on_add(raw: dict[str, Any]) -> None:
        enqueue_owner(raw, "added")

    def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
        if version_changed(old, new):
            enqueue_owner(new, "updated")

    return ResourceEventHandler(on_add=on_add, on_update=on_update)


def apiserver_endpoints_handler(controller: Controller, cache: ResourceCache) -> ResourceEventHandler:
    """Enqueue every namespace when the control-plane API endpoints move."""

    def enqueue_all(raw: dict[str, Any]) -> None:
        if _meta(raw).get("name") != APISERVER_SERVICE:
            return
        keys = [name for _ns, name in cache.keys(NAMESPACE)]
        _logger.info("apiserver_endpoints_changed", namespaces=len(keys))
        for key in keys:
            controller.enqueue(key)

    def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
        if version_changed(old, new):
            enqueue_all(new)

    return ResourceEventHandler(on_add=enqueue_all, on_update=on_update, on_delete=enqueue_all)


def owned_policy_handler(controller: Controller) -> ResourceEventHandler:
    """Enqueue a namespace when a policy it owns is edited or deleted out of band."""

    def enqueue_owner(raw: dict[str, Any]) -> None:
        for ref in _meta(raw).get("ownerReferences") or []:
            if ref.get("kind") == NAMESPACE and ref.get("controller"):
                controller.enqueue(str(ref.get("name", "")))
                return

    def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
        if version_changed(old, new):
            enqueue_owner(new)

    return ResourceEventHandler(on_update=on_update, on_delete=enqueue_owner)
