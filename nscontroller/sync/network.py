"""Network isolation policies for a namespace.

``synthesize_network_policies`` is a pure function of the namespace
snapshot and the control-plane API endpoint subsets. It always returns the
policies in the same order:

    1. default-deny                       (always)
    2. allow-same-namespace               (system default on, label override)
    3. default-allow-ingress-controller   (explicit opt-in only)
    4. default-allow-core-system          (always: DNS + service mesh)
    5. allow-kube-apiserver               (system namespaces, every pod)
       optional-allow-kube-apiserver      (other namespaces, opted-in pods)

Malformed label values and endpoint addresses are logged and ignored; they
never fail synthesis.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.errors import SyncError
from nscontroller.kube.client import (
    APISERVER_NAMESPACE,
    APISERVER_SERVICE,
    ENDPOINTS,
    NAMESPACE,
)
from nscontroller.models.config import LabelConfig
from nscontroller.models.policy import (
    EgressRule,
    IngressRule,
    IPBlock,
    LabelSelector,
    NetworkPolicy,
    OwnerReference,
    PolicyPeer,
    PolicyPort,
    PolicySpec,
    SelectorRequirement,
)
from nscontroller.models.resources import EndpointSubset, NamespaceSnapshot, subsets_from_endpoints
from nscontroller.observability.logging import get_logger
from nscontroller.sync.converge import Converger
from nscontroller.sync.labels import is_control_plane

_logger = get_logger("sync.network")

INGRESS = "Ingress"
EGRESS = "Egress"

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def parse_bool(value: str) -> bool | None:
    """Parse a boolean label value; None when it is not a recognised spelling."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _label_flag(namespace: NamespaceSnapshot, key: str) -> bool | None:
    """Read an optional boolean label, warning on (and ignoring) bad values."""
    value = namespace.labels.get(key)
    if value is None:
        return None
    parsed = parse_bool(value)
    if parsed is None:
        _logger.warning("invalid_boolean_label", label=key, value=value, namespace=namespace.name)
    return parsed


def _owner(namespace: NamespaceSnapshot) -> tuple[OwnerReference, ...]:
    return (OwnerReference(api_version="v1", kind="Namespace", name=namespace.name, uid=namespace.uid),)


def _mesh_peer(labels: LabelConfig, component: str) -> PolicyPeer:
    """Pods of an istio control-plane component in a system istio namespace."""
    return PolicyPeer(
        namespace_selector=LabelSelector(
            match_labels={
                "install.operator.istio.io/owner-name": "istio",
                labels.purpose: "system",
            }
        ),
        pod_selector=LabelSelector(
            match_expressions=(SelectorRequirement(key="istio", operator="In", values=(component,)),)
        ),
    )


def _default_deny(namespace: NamespaceSnapshot) -> NetworkPolicy:
    return NetworkPolicy(
        name="default-deny",
        namespace=namespace.name,
        owner_references=_owner(namespace),
        spec=PolicySpec(policy_types=(INGRESS, EGRESS)),
    )


def _allow_same_namespace(namespace: NamespaceSnapshot) -> NetworkPolicy:
    same_namespace = (PolicyPeer(pod_selector=LabelSelector()),)
    return NetworkPolicy(
        name="allow-same-namespace",
        namespace=namespace.name,
        owner_references=_owner(namespace),
        spec=PolicySpec(
            policy_types=(INGRESS, EGRESS),
            ingress=(IngressRule(peers=same_namespace),),
            egress=(EgressRule(peers=same_namespace),),
        ),
    )


def _allow_ingress_controller(namespace: NamespaceSnapshot, labels: LabelConfig) -> NetworkPolicy:
    gateway = PolicyPeer(
        namespace_selector=LabelSelector(
            match_labels={
                "install.operator.istio.io/owner-name": "istio",
                labels.purpose: "system",
            }
        ),
        pod_selector=LabelSelector(match_labels={"istio": "ingressgateway"}),
    )
    return NetworkPolicy(
        name="default-allow-ingress-controller",
        namespace=namespace.name,
        owner_references=_owner(namespace),
        spec=PolicySpec(policy_types=(INGRESS,), ingress=(IngressRule(peers=(gateway,)),)),
    )


def _allow_core_system(namespace: NamespaceSnapshot, labels: LabelConfig) -> NetworkPolicy:
    dns = PolicyPeer(
        namespace_selector=LabelSelector(match_labels={"kubernetes.io/cluster-service": "true"}),
        pod_selector=LabelSelector(match_labels={"k8s-app": "kube-dns"}),
    )
    return NetworkPolicy(
        name="default-allow-core-system",
        namespace=namespace.name,
        owner_references=_owner(namespace),
        spec=PolicySpec(
            policy_types=(INGRESS, EGRESS),
            ingress=(IngressRule(peers=(_mesh_peer(labels, "pilot"),)),),
            egress=(
                EgressRule(peers=(dns,), ports=(PolicyPort("UDP", 53), PolicyPort("TCP", 53))),
                EgressRule(peers=(_mesh_peer(labels, "pilot"),)),
                EgressRule(peers=(_mesh_peer(labels, "mixer"),)),
            ),
        ),
    )


def _host_cidr(address: str) -> str | None:
    """Render an IP literal as a single-host CIDR, or None if it does not parse."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address):
        # Zoned literals (fe80::1%eth0) are not valid CIDR hosts.
        if ip.scope_id is not None:
            return None
        if ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped
    return f"{ip}/{ip.max_prefixlen}"


def apiserver_egress_rules(subsets: Iterable[EndpointSubset]) -> tuple[EgressRule, ...]:
    """One egress rule per endpoint subset, addresses pinned to /32 or /128."""
    rules = []
    for subset in subsets:
        peers = []
        for address in subset.addresses:
            cidr = _host_cidr(address)
            if cidr is None:
                _logger.warning("invalid_endpoint_address", address=address)
                continue
            peers.append(PolicyPeer(ip_block=IPBlock(cidr=cidr)))
        if not peers:
            # A rule without peers would allow every destination on these ports.
            _logger.warning("endpoint_subset_skipped", reason="no valid addresses")
            continue
        ports = tuple(PolicyPort(protocol=p.protocol, port=p.port) for p in subset.ports)
        rules.append(EgressRule(peers=tuple(peers), ports=ports))
    return tuple(rules)


def _allow_kube_apiserver(
    namespace: NamespaceSnapshot,
    labels: LabelConfig,
    is_system: bool,
    subsets: Iterable[EndpointSubset],
) -> NetworkPolicy:
    if is_system:
        name = "allow-kube-apiserver"
        selector = LabelSelector()
    else:
        name = "optional-allow-kube-apiserver"
        selector = LabelSelector(match_labels={labels.allow_kube_apiserver: "true"})
    return NetworkPolicy(
        name=name,
        namespace=namespace.name,
        owner_references=_owner(namespace),
        spec=PolicySpec(
            pod_selector=selector,
            policy_types=(EGRESS,),
            egress=apiserver_egress_rules(subsets),
        ),
    )


def synthesize_network_policies(
    namespace: NamespaceSnapshot,
    subsets: Iterable[EndpointSubset],
    labels: LabelConfig,
) -> list[NetworkPolicy]:
    """Compute the desired NetworkPolicy set for *namespace*.

    Control-plane namespaces get nothing.
    """
    if is_control_plane(namespace, labels):
        return []

    is_system = namespace.labels.get(labels.purpose) == "system"
    policies = [_default_deny(namespace)]

    allow_same_ns = _label_flag(namespace, labels.allow_same_ns)
    if allow_same_ns is None:
        allow_same_ns = is_system
    if allow_same_ns:
        policies.append(_allow_same_namespace(namespace))

    if _label_flag(namespace, labels.allow_ingress_controller):
        policies.append(_allow_ingress_controller(namespace, labels))

    policies.append(_allow_core_system(namespace, labels))
    policies.append(_allow_kube_apiserver(namespace, labels, is_system, subsets))
    return policies


class NetworkReconciler:
    """Sync function for the network controller."""

    def __init__(self, cache: ResourceCache, converger: Converger, labels: LabelConfig) -> None:
        self._cache = cache
        self._converger = converger
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
        if namespace.terminating:
            # Writes into a terminating namespace are rejected; ownership
            # cascade removes the policies anyway.
            _logger.debug("namespace_skipped", reason="terminating")
            return

        endpoints = self._cache.get(ENDPOINTS, APISERVER_NAMESPACE, APISERVER_SERVICE)
        if endpoints is None:
            raise SyncError(f"endpoints {APISERVER_NAMESPACE}/{APISERVER_SERVICE} not found")

        policies = synthesize_network_policies(namespace, subsets_from_endpoints(endpoints), self._labels)
        await self._converger.converge(policies)
