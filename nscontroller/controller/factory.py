"""Wiring for the two controllers shipped with nscontroller.

label    -- propagates the namespace workload-id onto Pods and PVCs.
network  -- keeps the namespace NetworkPolicy set converged.

Both share the process-wide watch cache and cluster client; each owns its
own work queue.
"""

from __future__ import annotations

from collections.abc import Iterable

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.collector.handlers import (
    apiserver_endpoints_handler,
    dependent_handler,
    namespace_handler,
    owned_policy_handler,
)
from nscontroller.controller.loop import Controller, SyncFn
from nscontroller.controller.queue import WorkQueue
from nscontroller.kube.client import ENDPOINTS, NAMESPACE, NETWORK_POLICY, POD, PVC, ClusterClient
from nscontroller.models.config import NSControllerConfig
from nscontroller.sync.converge import Converger
from nscontroller.sync.labels import LabelReconciler
from nscontroller.sync.network import NetworkReconciler

CONTROLLER_KINDS: dict[str, tuple[str, ...]] = {
    "label": (NAMESPACE, POD, PVC),
    "network": (NAMESPACE, NETWORK_POLICY, ENDPOINTS),
}


def required_kinds(names: Iterable[str]) -> list[str]:
    """Union of the kinds the named controllers read, in first-seen order."""
    kinds: list[str] = []
    for name in names:
        for kind in CONTROLLER_KINDS[name]:
            if kind not in kinds:
                kinds.append(kind)
    return kinds


def _new_controller(name: str, sync_fn: SyncFn, cache: ResourceCache, config: NSControllerConfig) -> Controller:
    queue = WorkQueue(
        name=name,
        base_delay=config.controller.retry_base_delay,
        max_delay=config.controller.retry_max_delay,
    )
    return Controller(
        name=name,
        sync_fn=sync_fn,
        cache=cache,
        required_kinds=CONTROLLER_KINDS[name],
        queue=queue,
        max_retries=config.controller.max_retries,
        cache_sync_timeout=config.kube.cache_sync_timeout,
    )


def build_label_controller(cache: ResourceCache, client: ClusterClient, config: NSControllerConfig) -> Controller:
    reconciler = LabelReconciler(cache, client, config.labels)
    controller = _new_controller("label", reconciler, cache, config)
    cache.add_event_handler(NAMESPACE, namespace_handler(controller))
    cache.add_event_handler(POD, dependent_handler(controller, cache, POD))
    cache.add_event_handler(PVC, dependent_handler(controller, cache, PVC))
    return controller


def build_network_controller(cache: ResourceCache, client: ClusterClient, config: NSControllerConfig) -> Controller:
    reconciler = NetworkReconciler(cache, Converger(cache, client), config.labels)
    controller = _new_controller("network", reconciler, cache, config)
    cache.add_event_handler(NAMESPACE, namespace_handler(controller))
    cache.add_event_handler(ENDPOINTS, apiserver_endpoints_handler(controller, cache))
    cache.add_event_handler(NETWORK_POLICY, owned_policy_handler(controller))
    return controller


def build_controllers(
    names: Iterable[str],
    cache: ResourceCache,
    client: ClusterClient,
    config: NSControllerConfig,
) -> list[Controller]:
    builders = {"label": build_label_controller, "network": build_network_controller}
    return [builders[name](cache, client, config) for name in names]
