"""Thin async facade over the kubernetes-asyncio API classes.

Objects cross this boundary as plain wire-format dicts: list results are
converted with ``sanitize_for_serialization`` and request bodies are sent as
dicts, which the generated client serialises unchanged. Every call carries
``_request_timeout`` so no reconcile pass can block indefinitely.

Write failures of any flavour (API status, connection error, timeout) are
re-raised as ``TransientAPIError``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from nscontroller.errors import TransientAPIError
from nscontroller.models.resources import DependentKind
from nscontroller.observability.logging import get_logger
from nscontroller.observability.metrics import api_calls_total

_logger = get_logger("kube.client")

NAMESPACE = "Namespace"
POD = DependentKind.POD.value
PVC = DependentKind.PERSISTENT_VOLUME_CLAIM.value
NETWORK_POLICY = "NetworkPolicy"
ENDPOINTS = "Endpoints"

# The control-plane API service lives at default/kubernetes in every cluster.
APISERVER_NAMESPACE = "default"
APISERVER_SERVICE = "kubernetes"


@dataclass(frozen=True)
class ListTarget:
    """How to list (and watch) one resource kind."""

    kind: str
    list_fn: Callable[..., Awaitable[Any]]
    kwargs: dict[str, Any] = field(default_factory=dict)


class ClusterClient:
    """Cluster API collaborator shared by every worker.

    Safe for concurrent use: the work queue never hands the same namespace
    to two workers, and all writes are namespace-scoped.
    """

    def __init__(self, api_client: Any = None, request_timeout: float = 30.0) -> None:
        self._api_client = api_client if api_client is not None else k8s_client.ApiClient()
        self.core_v1 = k8s_client.CoreV1Api(self._api_client)
        self.networking_v1 = k8s_client.NetworkingV1Api(self._api_client)
        self.request_timeout = request_timeout

    # ------------------------------------------------------------------
    # Listing (watchers)
    # ------------------------------------------------------------------

    def list_target(self, kind: str) -> ListTarget:
        """Return the list function a watcher should use for *kind*."""
        if kind == NAMESPACE:
            return ListTarget(kind, self.core_v1.list_namespace)
        if kind == POD:
            return ListTarget(kind, self.core_v1.list_pod_for_all_namespaces)
        if kind == PVC:
            return ListTarget(kind, self.core_v1.list_persistent_volume_claim_for_all_namespaces)
        if kind == NETWORK_POLICY:
            return ListTarget(kind, self.networking_v1.list_network_policy_for_all_namespaces)
        if kind == ENDPOINTS:
            return ListTarget(
                kind,
                self.core_v1.list_namespaced_endpoints,
                {"namespace": APISERVER_NAMESPACE},
            )
        raise ValueError(f"Unsupported resource kind: {kind}")

    def to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert a generated model object to its wire-format dict."""
        return self._api_client.sanitize_for_serialization(obj)  # type: ignore[no-any-return]

    # ------------------------------------------------------------------
    # Writes (reconcile workers)
    # ------------------------------------------------------------------

    async def create_network_policy(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        name = str(body.get("metadata", {}).get("name", ""))
        return await self._write(
            "create",
            NETWORK_POLICY,
            namespace,
            name,
            self.networking_v1.create_namespaced_network_policy,
            namespace,
            body,
        )

    async def replace_network_policy(self, namespace: str, name: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._write(
            "update",
            NETWORK_POLICY,
            namespace,
            name,
            self.networking_v1.replace_namespaced_network_policy,
            name,
            namespace,
            body,
        )

    async def replace_dependent(
        self,
        kind: DependentKind,
        namespace: str,
        name: str,
        body: dict[str, Any],
    ) -> dict[str, Any]:
        if kind is DependentKind.POD:
            fn = self.core_v1.replace_namespaced_pod
        else:
            fn = self.core_v1.replace_namespaced_persistent_volume_claim
        return await self._write("update", kind.value, namespace, name, fn, name, namespace, body)

    async def _write(
        self,
        operation: str,
        kind: str,
        namespace: str,
        name: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> dict[str, Any]:
        try:
            result = await fn(*args, _request_timeout=self.request_timeout)
        except ApiException as exc:
            api_calls_total.labels(verb=operation, kind=kind, result="error").inc()
            raise TransientAPIError(operation, kind, namespace, name, status=exc.status, reason=str(exc.reason)) from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            api_calls_total.labels(verb=operation, kind=kind, result="error").inc()
            raise TransientAPIError(operation, kind, namespace, name, reason=type(exc).__name__) from exc
        api_calls_total.labels(verb=operation, kind=kind, result="success").inc()
        _logger.debug("api_write", verb=operation, kind=kind, namespace=namespace, name=name)
        return self.to_dict(result)

    async def close(self) -> None:
        await self._api_client.close()


async def load_kube_config() -> str:
    """Configure kubernetes-asyncio from the service account, falling back to kubeconfig.

    Returns the source that was used.
    """
    import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]

    try:
        # load_incluster_config() is synchronous in kubernetes-asyncio
        k8s_config.load_incluster_config()
        return "in-cluster"
    except k8s_config.ConfigException:
        await k8s_config.load_kube_config()
        return "kubeconfig"


def is_gone(exc: BaseException) -> bool:
    """True when the API reports the watched resourceVersion has expired."""
    return isinstance(exc, ApiException) and exc.status == 410


