"""Tests for the NetworkPolicy converger and spec normalisation."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.errors import ConvergeError, TransientAPIError
from nscontroller.models.config import LabelConfig
from nscontroller.models.resources import EndpointPort, EndpointSubset, NamespaceSnapshot
from nscontroller.sync.converge import Converger, normalize_spec, specs_equal
from nscontroller.sync.network import synthesize_network_policies

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _desired() -> list:
    namespace = NamespaceSnapshot(name="team-a", uid="uid-1", labels={"namespace.statcan.gc.ca/purpose": "system"})
    subsets = (EndpointSubset(addresses=("10.0.0.5",), ports=(EndpointPort(port=443),)),)
    return synthesize_network_policies(namespace, subsets, LabelConfig())


def _stored(policy_dict: dict[str, Any], resource_version: str = "7") -> dict[str, Any]:
    """Shape a desired policy the way the API server hands it back."""
    stored = copy.deepcopy(policy_dict)
    stored["metadata"].update({"resourceVersion": resource_version, "uid": f"np-{policy_dict['metadata']['name']}"})
    return stored


def _make_client() -> MagicMock:
    client = MagicMock()
    client.create_network_policy = AsyncMock(return_value={})
    client.replace_network_policy = AsyncMock(return_value={})
    return client


def _cache_with(items: list[dict[str, Any]]) -> ResourceCache:
    cache = ResourceCache()
    cache.replace("NetworkPolicy", items)
    return cache


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------


class TestNormalizeSpec:
    def test_empty_lists_and_none_are_dropped(self) -> None:
        assert normalize_spec({"a": [], "b": None, "c": 1}) == {"c": 1}

    def test_empty_selector_is_kept(self) -> None:
        assert normalize_spec({"podSelector": {}}) == {"podSelector": {}}

    def test_nested_values_are_normalised(self) -> None:
        spec = {"egress": [{"to": [{"ipBlock": {"cidr": "10.0.0.5/32", "except": None}}], "ports": []}]}
        assert normalize_spec(spec) == {"egress": [{"to": [{"ipBlock": {"cidr": "10.0.0.5/32"}}]}]}

    def test_specs_equal_ignores_server_side_nulls(self) -> None:
        desired = {"podSelector": {}, "policyTypes": ["Ingress"]}
        actual = {"podSelector": {}, "policyTypes": ["Ingress"], "ingress": None, "egress": []}
        assert specs_equal(desired, actual)

    def test_specs_equal_detects_missing_actual(self) -> None:
        assert not specs_equal({"podSelector": {}}, None)


# ---------------------------------------------------------------------------
# Converge
# ---------------------------------------------------------------------------


class TestConverger:
    async def test_absent_policies_are_created(self) -> None:
        client = _make_client()
        result = await Converger(_cache_with([]), client).converge(_desired())
        assert result.created == 4
        assert result.updated == 0
        created = [c.args[1]["metadata"]["name"] for c in client.create_network_policy.await_args_list]
        assert created == [
            "default-deny",
            "allow-same-namespace",
            "default-allow-core-system",
            "allow-kube-apiserver",
        ]

    async def test_matching_policies_cause_no_writes(self) -> None:
        desired = _desired()
        client = _make_client()
        cache = _cache_with([_stored(p.to_dict()) for p in desired])
        result = await Converger(cache, client).converge(desired)
        assert result.writes == 0
        assert result.unchanged == 4
        client.create_network_policy.assert_not_awaited()
        client.replace_network_policy.assert_not_awaited()

    async def test_drifted_policy_is_replaced_on_stored_copy(self) -> None:
        desired = _desired()
        stored = [_stored(p.to_dict()) for p in desired]
        stored[0]["spec"] = {"podSelector": {}, "policyTypes": ["Ingress"]}
        stored[0]["metadata"]["labels"] = {"kept": "yes"}
        client = _make_client()
        result = await Converger(_cache_with(stored), client).converge(desired)

        assert result.updated == 1
        namespace, name, body = client.replace_network_policy.await_args.args
        assert (namespace, name) == ("team-a", "default-deny")
        assert body["spec"] == {"podSelector": {}, "policyTypes": ["Ingress", "Egress"]}
        assert body["metadata"]["resourceVersion"] == "7"
        assert body["metadata"]["labels"] == {"kept": "yes"}

    async def test_failures_do_not_stop_the_batch(self) -> None:
        client = _make_client()
        error = TransientAPIError("create", "NetworkPolicy", "team-a", "default-deny", status=500, reason="boom")
        client.create_network_policy.side_effect = [error, {}, {}, {}]
        with pytest.raises(ConvergeError) as exc_info:
            await Converger(_cache_with([]), client).converge(_desired())
        assert client.create_network_policy.await_count == 4
        assert exc_info.value.failures == [error]

    async def test_conflict_is_reported_as_failure(self) -> None:
        client = _make_client()
        client.create_network_policy.side_effect = TransientAPIError(
            "create", "NetworkPolicy", "team-a", "x", status=409, reason="AlreadyExists"
        )
        with capture_logs() as logs, pytest.raises(ConvergeError) as exc_info:
            await Converger(_cache_with([]), client).converge(_desired())
        assert all(f.is_conflict for f in exc_info.value.failures)
        failed = [e for e in logs if e["event"] == "policy_write_failed"]
        assert failed and all(e["conflict"] is True for e in failed)
