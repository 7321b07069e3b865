"""Workload-id label propagation from a namespace to its Pods and PVCs.

``compute_label_corrections`` is pure: given a namespace snapshot and its
dependents it returns the label maps that need writing, and nothing for
dependents that already carry the namespace's value. ``LabelReconciler``
gathers those inputs from the watch cache and applies the corrections one
by one; the first failed write aborts the pass (earlier writes stay, the
retry converges the rest).
"""

from __future__ import annotations

from collections.abc import Iterable

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.errors import ListFailure
from nscontroller.kube.client import NAMESPACE, ClusterClient
from nscontroller.models.config import LabelConfig
from nscontroller.models.resources import (
    DependentKind,
    DependentRef,
    LabelCorrection,
    NamespaceSnapshot,
)
from nscontroller.observability.logging import get_logger

_logger = get_logger("sync.labels")


def is_control_plane(namespace: NamespaceSnapshot, labels: LabelConfig) -> bool:
    """Namespaces carrying the control-plane marker are never reconciled."""
    return labels.control_plane in namespace.labels


def compute_label_corrections(
    namespace: NamespaceSnapshot,
    dependents: Iterable[DependentRef],
    labels: LabelConfig,
) -> list[LabelCorrection]:
    """Return corrected label maps for dependents whose workload-id drifted.

    Existing labels are preserved; only the workload-id key is set. The
    snapshots themselves are left untouched.
    """
    if is_control_plane(namespace, labels):
        return []
    workload_id = namespace.labels.get(labels.workload_id)
    if workload_id is None:
        return []

    corrections = []
    for dependent in dependents:
        if dependent.labels.get(labels.workload_id) == workload_id:
            continue
        corrected = dict(dependent.labels)
        corrected[labels.workload_id] = workload_id
        corrections.append(LabelCorrection(dependent=dependent, labels=corrected))
    return corrections


def list_dependents(cache: ResourceCache, kind: DependentKind, namespace: str) -> list[DependentRef]:
    """List the *kind* dependents of *namespace* from the cache.

    Raises ListFailure when the kind's cache has not completed a list, so
    an empty answer is never mistaken for "no dependents".
    """
    if not cache.has_synced(kind.value):
        raise ListFailure(f"{kind.value} cache not synced")
    return [DependentRef.from_raw(kind, raw) for raw in cache.list(kind.value, namespace)]


class LabelReconciler:
    """Sync function for the label controller."""

    def __init__(self, cache: ResourceCache, client: ClusterClient, labels: LabelConfig) -> None:
        self._cache = cache
        self._client = client
        self._labels = labels

    async def __call__(self, key: str) -> None:
        raw = self._cache.get(NAMESPACE, "", key)
        if raw is None:
            _logger.debug("namespace_not_found")
            return
        namespace = NamespaceSnapshot.from_raw(raw)

        if is_control_plane(namespace, self._labels):
            _logger.info("namespace_skipped", reason="control-plane")
            return
        if namespace.terminating or self._labels.workload_id not in namespace.labels:
            return

        dependents: list[DependentRef] = []
        for kind in DependentKind:
            dependents.extend(self._dependents(kind, namespace.name))

        corrections = compute_label_corrections(namespace, dependents, self._labels)
        if corrections:
            _logger.info(
                "propagating_workload_id",
                dependents=len(corrections),
                namespace_version=namespace.resource_version,
            )
        for correction in corrections:
            await self._apply(correction)

    def _dependents(self, kind: DependentKind, namespace: str) -> list[DependentRef]:
        try:
            return list_dependents(self._cache, kind, namespace)
        except ListFailure as exc:
            _logger.warning("dependent_list_failed", kind=kind.value, error=str(exc))
            return []

    async def _apply(self, correction: LabelCorrection) -> None:
        ref = correction.dependent
        workload_id = correction.labels[self._labels.workload_id]
        # get() hands back a private copy; the cached object stays as the
        # server last reported it until the watch delivers our write.
        body = self._cache.get(ref.kind.value, ref.namespace, ref.name)
        if body is None:
            _logger.debug("dependent_gone", kind=ref.kind.value, name=ref.name)
            return
        # Only the workload-id key is written. The body may be newer than the
        # snapshot the correction was computed from; its other labels win.
        labels = body.setdefault("metadata", {}).get("labels") or {}
        if labels.get(self._labels.workload_id) == workload_id:
            _logger.debug("dependent_already_labeled", kind=ref.kind.value, name=ref.name)
            return
        labels[self._labels.workload_id] = workload_id
        body["metadata"]["labels"] = labels
        await self._client.replace_dependent(ref.kind, ref.namespace, ref.name, body)
        _logger.info(
            "dependent_labeled",
            kind=ref.kind.value,
            name=ref.name,
            snapshot_version=ref.resource_version,
            written_version=body["metadata"].get("resourceVersion"),
        )
