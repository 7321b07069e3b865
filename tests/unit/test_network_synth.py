"""Tests for NetworkPolicy synthesis.

Covers the label-driven policy selection, the control-plane API egress
rules built from endpoint subsets, and the output shape of every policy.
"""

from __future__ import annotations

from typing import Any

from hypothesis import given
from hypothesis import strategies as st
from structlog.testing import capture_logs

from nscontroller.models.config import LabelConfig
from nscontroller.models.resources import EndpointPort, EndpointSubset, NamespaceSnapshot, subsets_from_endpoints
from nscontroller.sync.network import apiserver_egress_rules, parse_bool, synthesize_network_policies

LABELS = LabelConfig()

_PURPOSE = "namespace.statcan.gc.ca/purpose"
_ALLOW_SAME_NS = "network.statcan.gc.ca/allow-same-ns"
_ALLOW_INGRESS = "network.statcan.gc.ca/allow-ingress-controller"
_ALLOW_APISERVER = "network.statcan.gc.ca/allow-kube-apiserver"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _ns(name: str = "team-a", labels: dict[str, str] | None = None) -> NamespaceSnapshot:
    return NamespaceSnapshot(name=name, uid=f"uid-{name}", resource_version="1", labels=labels or {})


def _subsets() -> tuple[EndpointSubset, ...]:
    return (EndpointSubset(addresses=("10.0.0.5",), ports=(EndpointPort(port=443, protocol="TCP"),)),)


def _names(namespace: NamespaceSnapshot, subsets: tuple[EndpointSubset, ...] | None = None) -> list[str]:
    policies = synthesize_network_policies(namespace, _subsets() if subsets is None else subsets, LABELS)
    return [p.name for p in policies]


def _by_name(namespace: NamespaceSnapshot) -> dict[str, dict[str, Any]]:
    return {p.name: p.to_dict() for p in synthesize_network_policies(namespace, _subsets(), LABELS)}


# ---------------------------------------------------------------------------
# Policy selection
# ---------------------------------------------------------------------------


class TestPolicySelection:
    def test_system_namespace_defaults(self) -> None:
        """A system namespace gets same-namespace traffic and unconditional API egress."""
        names = _names(_ns(labels={_PURPOSE: "system"}))
        assert names == [
            "default-deny",
            "allow-same-namespace",
            "default-allow-core-system",
            "allow-kube-apiserver",
        ]

    def test_plain_namespace_with_same_ns_opt_in(self) -> None:
        """allow-same-ns=true on a regular namespace adds same-namespace traffic."""
        names = _names(_ns(labels={_ALLOW_SAME_NS: "true"}))
        assert names == [
            "default-deny",
            "allow-same-namespace",
            "default-allow-core-system",
            "optional-allow-kube-apiserver",
        ]

    def test_plain_namespace_without_labels(self) -> None:
        names = _names(_ns())
        assert names == ["default-deny", "default-allow-core-system", "optional-allow-kube-apiserver"]

    def test_system_namespace_can_opt_out_of_same_namespace(self) -> None:
        names = _names(_ns(labels={_PURPOSE: "system", _ALLOW_SAME_NS: "false"}))
        assert "allow-same-namespace" not in names

    def test_ingress_controller_opt_in(self) -> None:
        names = _names(_ns(labels={_ALLOW_INGRESS: "true"}))
        assert names == [
            "default-deny",
            "default-allow-ingress-controller",
            "default-allow-core-system",
            "optional-allow-kube-apiserver",
        ]

    def test_ingress_controller_not_enabled_by_system_purpose(self) -> None:
        assert "default-allow-ingress-controller" not in _names(_ns(labels={_PURPOSE: "system"}))

    def test_control_plane_namespace_gets_nothing(self) -> None:
        assert _names(_ns(labels={"control-plane": "", _PURPOSE: "system"})) == []

    def test_other_purpose_values_are_not_system(self) -> None:
        names = _names(_ns(labels={_PURPOSE: "daaas"}))
        assert "allow-same-namespace" not in names
        assert names[-1] == "optional-allow-kube-apiserver"

    def test_invalid_boolean_is_warned_and_ignored(self) -> None:
        with capture_logs() as logs:
            names = _names(_ns(labels={_ALLOW_SAME_NS: "yes-please"}))
        assert "allow-same-namespace" not in names
        warnings = [e for e in logs if e["event"] == "invalid_boolean_label"]
        assert len(warnings) == 1
        assert warnings[0]["label"] == _ALLOW_SAME_NS
        assert warnings[0]["value"] == "yes-please"

    def test_invalid_boolean_on_system_namespace_keeps_default(self) -> None:
        names = _names(_ns(labels={_PURPOSE: "system", _ALLOW_SAME_NS: "maybe"}))
        assert "allow-same-namespace" in names

    def test_absent_boolean_is_not_warned(self) -> None:
        with capture_logs() as logs:
            _names(_ns())
        assert not [e for e in logs if e["event"] == "invalid_boolean_label"]


class TestParseBool:
    def test_true_spellings(self) -> None:
        for value in ("1", "t", "T", "TRUE", "true", "True"):
            assert parse_bool(value) is True

    def test_false_spellings(self) -> None:
        for value in ("0", "f", "F", "FALSE", "false", "False"):
            assert parse_bool(value) is False

    def test_unrecognised_spellings(self) -> None:
        for value in ("", "yes", "no", "tRUE", " true"):
            assert parse_bool(value) is None


# ---------------------------------------------------------------------------
# Policy shapes
# ---------------------------------------------------------------------------


class TestPolicyShapes:
    def test_default_deny_selects_all_and_blocks_both_directions(self) -> None:
        policy = _by_name(_ns())["default-deny"]
        assert policy["spec"] == {"podSelector": {}, "policyTypes": ["Ingress", "Egress"]}

    def test_every_policy_is_owned_by_the_namespace(self) -> None:
        for policy in _by_name(_ns(labels={_PURPOSE: "system", _ALLOW_INGRESS: "1"})).values():
            assert policy["metadata"]["namespace"] == "team-a"
            assert policy["metadata"]["ownerReferences"] == [
                {
                    "apiVersion": "v1",
                    "kind": "Namespace",
                    "name": "team-a",
                    "uid": "uid-team-a",
                    "controller": True,
                    "blockOwnerDeletion": True,
                }
            ]

    def test_allow_same_namespace_peers(self) -> None:
        spec = _by_name(_ns(labels={_ALLOW_SAME_NS: "true"}))["allow-same-namespace"]["spec"]
        assert spec["ingress"] == [{"from": [{"podSelector": {}}]}]
        assert spec["egress"] == [{"to": [{"podSelector": {}}]}]

    def test_ingress_controller_peer(self) -> None:
        spec = _by_name(_ns(labels={_ALLOW_INGRESS: "true"}))["default-allow-ingress-controller"]["spec"]
        assert spec["policyTypes"] == ["Ingress"]
        assert spec["ingress"] == [
            {
                "from": [
                    {
                        "namespaceSelector": {
                            "matchLabels": {"install.operator.istio.io/owner-name": "istio", _PURPOSE: "system"}
                        },
                        "podSelector": {"matchLabels": {"istio": "ingressgateway"}},
                    }
                ]
            }
        ]

    def test_core_system_allows_dns_on_port_53(self) -> None:
        spec = _by_name(_ns())["default-allow-core-system"]["spec"]
        dns = spec["egress"][0]
        assert dns["to"] == [
            {
                "namespaceSelector": {"matchLabels": {"kubernetes.io/cluster-service": "true"}},
                "podSelector": {"matchLabels": {"k8s-app": "kube-dns"}},
            }
        ]
        assert dns["ports"] == [{"protocol": "UDP", "port": 53}, {"protocol": "TCP", "port": 53}]

    def test_core_system_allows_mesh_control_plane(self) -> None:
        spec = _by_name(_ns())["default-allow-core-system"]["spec"]
        pilot = spec["ingress"][0]["from"][0]
        assert pilot["podSelector"] == {"matchExpressions": [{"key": "istio", "operator": "In", "values": ["pilot"]}]}
        mixer = spec["egress"][2]["to"][0]
        assert mixer["podSelector"] == {"matchExpressions": [{"key": "istio", "operator": "In", "values": ["mixer"]}]}

    def test_optional_apiserver_policy_is_selector_gated(self) -> None:
        spec = _by_name(_ns())["optional-allow-kube-apiserver"]["spec"]
        assert spec["podSelector"] == {"matchLabels": {_ALLOW_APISERVER: "true"}}
        assert spec["policyTypes"] == ["Egress"]

    def test_system_apiserver_policy_selects_every_pod(self) -> None:
        spec = _by_name(_ns(labels={_PURPOSE: "system"}))["allow-kube-apiserver"]["spec"]
        assert spec["podSelector"] == {}


# ---------------------------------------------------------------------------
# API server egress
# ---------------------------------------------------------------------------


class TestApiserverEgress:
    def test_malformed_address_is_skipped_with_warning(self) -> None:
        raw = {
            "subsets": [
                {
                    "addresses": [{"ip": "10.0.0.5"}, {"ip": "not-an-ip"}],
                    "ports": [{"name": "https", "port": 443, "protocol": "TCP"}],
                }
            ]
        }
        with capture_logs() as logs:
            rules = apiserver_egress_rules(subsets_from_endpoints(raw))
        assert [r.to_dict() for r in rules] == [
            {"to": [{"ipBlock": {"cidr": "10.0.0.5/32"}}], "ports": [{"protocol": "TCP", "port": 443}]}
        ]
        warnings = [e for e in logs if e["event"] == "invalid_endpoint_address"]
        assert [w["address"] for w in warnings] == ["not-an-ip"]

    def test_ipv6_address_uses_host_prefix(self) -> None:
        subsets = (EndpointSubset(addresses=("fd00::1",), ports=(EndpointPort(port=6443),)),)
        rules = apiserver_egress_rules(subsets)
        assert rules[0].to_dict()["to"] == [{"ipBlock": {"cidr": "fd00::1/128"}}]

    def test_ipv4_mapped_address_is_rendered_as_ipv4(self) -> None:
        subsets = (EndpointSubset(addresses=("::ffff:10.0.0.7",), ports=(EndpointPort(port=443),)),)
        rules = apiserver_egress_rules(subsets)
        assert rules[0].to_dict()["to"] == [{"ipBlock": {"cidr": "10.0.0.7/32"}}]

    def test_one_rule_per_subset(self) -> None:
        subsets = (
            EndpointSubset(addresses=("10.0.0.5", "10.0.0.6"), ports=(EndpointPort(port=443),)),
            EndpointSubset(addresses=("10.0.1.5",), ports=(EndpointPort(port=6443),)),
        )
        rules = apiserver_egress_rules(subsets)
        assert len(rules) == 2
        assert len(rules[0].peers) == 2

    def test_zoned_ipv6_address_is_skipped_with_warning(self) -> None:
        subsets = (EndpointSubset(addresses=("fe80::1%eth0", "10.0.0.5"), ports=(EndpointPort(port=443),)),)
        with capture_logs() as logs:
            rules = apiserver_egress_rules(subsets)
        assert rules[0].to_dict()["to"] == [{"ipBlock": {"cidr": "10.0.0.5/32"}}]
        warnings = [e for e in logs if e["event"] == "invalid_endpoint_address"]
        assert [w["address"] for w in warnings] == ["fe80::1%eth0"]

    def test_subset_without_valid_addresses_is_dropped(self) -> None:
        subsets = (EndpointSubset(addresses=("bogus",), ports=(EndpointPort(port=443),)),)
        with capture_logs() as logs:
            rules = apiserver_egress_rules(subsets)
        assert rules == ()
        assert any(e["event"] == "endpoint_subset_skipped" for e in logs)

    def test_no_subsets_yields_egress_policy_without_rules(self) -> None:
        policies = synthesize_network_policies(_ns(), (), LABELS)
        spec = policies[-1].to_dict()["spec"]
        assert "egress" not in spec
        assert spec["policyTypes"] == ["Egress"]


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------

_label_keys = st.sampled_from([_PURPOSE, _ALLOW_SAME_NS, _ALLOW_INGRESS, "team", "control-plane"])
_label_values = st.sampled_from(["system", "true", "false", "1", "0", "junk", ""])


class TestDeterminism:
    @given(labels=st.dictionaries(_label_keys, _label_values, max_size=5))
    def test_same_input_same_output(self, labels: dict[str, str]) -> None:
        namespace = _ns(labels=labels)
        first = [p.to_dict() for p in synthesize_network_policies(namespace, _subsets(), LABELS)]
        second = [p.to_dict() for p in synthesize_network_policies(namespace, _subsets(), LABELS)]
        assert first == second

    @given(labels=st.dictionaries(_label_keys, _label_values, max_size=5))
    def test_default_deny_first_and_names_unique(self, labels: dict[str, str]) -> None:
        names = _names(_ns(labels=labels))
        if "control-plane" in labels:
            assert names == []
            return
        assert names[0] == "default-deny"
        assert len(names) == len(set(names))
        assert "default-allow-core-system" in names
