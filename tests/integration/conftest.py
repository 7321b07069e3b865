"""Shared fixtures for nscontroller integration tests.

Provides a populated ResourceCache and a mocked ClusterClient wired into the
real controllers, so tests can drive full reconcile passes without a
cluster.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.models.config import ControllerConfig, KubeConfig, NSControllerConfig

WORKLOAD_ID = "finance.statcan.gc.ca/workload-id"
PURPOSE = "namespace.statcan.gc.ca/purpose"

# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_namespace(name: str, labels: dict[str, str] | None = None, rv: str = "1") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {"name": name, "uid": f"uid-{name}", "resourceVersion": rv, "labels": labels or {}},
        "status": {"phase": "Active"},
    }


def make_pod(name: str, namespace: str, labels: dict[str, str] | None = None, rv: str = "1") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": rv, "labels": labels or {}},
        "spec": {"containers": [{"name": "app", "image": "nginx"}]},
    }


def make_pvc(name: str, namespace: str, labels: dict[str, str] | None = None) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": "1", "labels": labels or {}},
        "spec": {"accessModes": ["ReadWriteOnce"]},
    }


def make_apiserver_endpoints(*addresses: str, port: int = 443) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Endpoints",
        "metadata": {"name": "kubernetes", "namespace": "default", "resourceVersion": "1"},
        "subsets": [
            {
                "addresses": [{"ip": a} for a in addresses],
                "ports": [{"name": "https", "port": port, "protocol": "TCP"}],
            }
        ],
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> NSControllerConfig:
    return NSControllerConfig(
        controller=ControllerConfig(workers=2, retry_base_delay=0.01, retry_max_delay=0.05),
        kube=KubeConfig(cache_sync_timeout=0.2),
    )


@pytest.fixture
def cache() -> ResourceCache:
    return ResourceCache()


@pytest.fixture
def client() -> MagicMock:
    """Cluster client whose writes succeed and echo the request body."""
    mock = MagicMock()
    mock.create_network_policy = AsyncMock(side_effect=lambda ns, body: body)
    mock.replace_network_policy = AsyncMock(side_effect=lambda ns, name, body: body)
    mock.replace_dependent = AsyncMock(side_effect=lambda kind, ns, name, body: body)
    return mock


def total_writes(client: MagicMock) -> int:
    return (
        client.create_network_policy.await_count
        + client.replace_network_policy.await_count
        + client.replace_dependent.await_count
    )
