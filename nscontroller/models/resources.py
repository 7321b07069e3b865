"""Immutable snapshots of cluster objects consumed by the synthesizers.

Built fresh from the watch cache on every reconcile pass. The raw cached
dicts are never handed to a synthesizer, so nothing downstream can mutate
cache state ahead of a confirmed API write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class CacheReadiness(StrEnum):
    """Watch cache completeness state."""

    READY = "ready"
    WARMING = "warming"
    PARTIALLY_READY = "partially_ready"
    DEGRADED = "degraded"


class DependentKind(StrEnum):
    """Namespace-scoped objects whose labels track their namespace."""

    POD = "Pod"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"


def _metadata(raw: dict[str, Any]) -> dict[str, Any]:
    metadata = raw.get("metadata") or {}
    return metadata if isinstance(metadata, dict) else {}


def _labels(metadata: dict[str, Any]) -> dict[str, str]:
    return {str(k): str(v) for k, v in (metadata.get("labels") or {}).items()}


@dataclass(frozen=True)
class NamespaceSnapshot:
    """Read-only view of a Namespace for one reconcile pass."""

    name: str
    uid: str = ""
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    terminating: bool = False

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> NamespaceSnapshot:
        metadata = _metadata(raw)
        return cls(
            name=str(metadata.get("name", "")),
            uid=str(metadata.get("uid") or ""),
            resource_version=str(metadata.get("resourceVersion") or ""),
            labels=_labels(metadata),
            terminating=bool(metadata.get("deletionTimestamp"))
            or (raw.get("status") or {}).get("phase") == "Terminating",
        )


@dataclass(frozen=True)
class DependentRef:
    """A Pod or PVC living in a namespace, as seen by the label synthesizer."""

    kind: DependentKind
    namespace: str
    name: str
    resource_version: str = ""
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, kind: DependentKind, raw: dict[str, Any]) -> DependentRef:
        metadata = _metadata(raw)
        return cls(
            kind=kind,
            namespace=str(metadata.get("namespace", "")),
            name=str(metadata.get("name", "")),
            resource_version=str(metadata.get("resourceVersion") or ""),
            labels=_labels(metadata),
        )


@dataclass(frozen=True)
class LabelCorrection:
    """Label map a dependent must carry once its drift is corrected."""

    dependent: DependentRef
    labels: dict[str, str]


@dataclass(frozen=True)
class EndpointPort:
    """A port on which the control-plane API accepts traffic."""

    port: int
    protocol: str = "TCP"
    name: str | None = None


@dataclass(frozen=True)
class EndpointSubset:
    """Addresses and ports where the control-plane API is reachable.

    Addresses are kept as raw strings; parsing happens during synthesis so a
    malformed entry can be reported and skipped there.
    """

    addresses: tuple[str, ...] = ()
    ports: tuple[EndpointPort, ...] = ()

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> EndpointSubset:
        addresses = tuple(str(a.get("ip", "")) for a in raw.get("addresses") or [])
        ports = tuple(
            EndpointPort(
                port=int(p.get("port", 0)),
                protocol=str(p.get("protocol") or "TCP"),
                name=p.get("name"),
            )
            for p in raw.get("ports") or []
        )
        return cls(addresses=addresses, ports=ports)


def subsets_from_endpoints(raw: dict[str, Any]) -> tuple[EndpointSubset, ...]:
    """Extract the subsets of a raw ``v1.Endpoints`` object."""
    return tuple(EndpointSubset.from_raw(s) for s in raw.get("subsets") or [])
