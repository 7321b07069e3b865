"""Apply desired NetworkPolicies with the fewest possible writes.

For each desired policy the stored copy is looked up in the watch cache:
absent is created, a differing spec is replaced on a copy of the stored
object (metadata, status and resourceVersion untouched), an equal spec is
left alone. Failed writes do not stop the batch; they are collected and
raised together once every policy has been attempted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from nscontroller.cache.resource_cache import ResourceCache
from nscontroller.errors import ConvergeError, TransientAPIError
from nscontroller.kube.client import NETWORK_POLICY, ClusterClient
from nscontroller.models.policy import NetworkPolicy
from nscontroller.observability.logging import get_logger

_logger = get_logger("sync.converge")


def normalize_spec(value: Any) -> Any:
    """Drop ``None`` and empty-list fields recursively.

    The API server omits empty optional lists that the desired side may
    carry, and vice versa. Empty dicts are kept: an empty selector means
    "match everything" and is not the same as no selector.
    """
    if isinstance(value, dict):
        return {
            k: normalize_spec(v)
            for k, v in value.items()
            if v is not None and not (isinstance(v, list) and not v)
        }
    if isinstance(value, list):
        return [normalize_spec(v) for v in value]
    return value


def specs_equal(desired: dict[str, Any], actual: dict[str, Any] | None) -> bool:
    return normalize_spec(desired) == normalize_spec(actual or {})


@dataclass
class ConvergeResult:
    created: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def writes(self) -> int:
        return self.created + self.updated


class Converger:
    """Diffs desired policies against the cache and writes the difference."""

    def __init__(self, cache: ResourceCache, client: ClusterClient) -> None:
        self._cache = cache
        self._client = client

    async def converge(self, policies: Iterable[NetworkPolicy]) -> ConvergeResult:
        result = ConvergeResult()
        failures: list[TransientAPIError] = []
        for policy in policies:
            try:
                await self._converge_one(policy, result)
            except TransientAPIError as exc:
                _logger.error("policy_write_failed", policy=policy.name, error=str(exc), conflict=exc.is_conflict)
                failures.append(exc)
        if failures:
            raise ConvergeError(failures)
        if result.writes:
            _logger.info("policies_converged", created=result.created, updated=result.updated)
        return result

    async def _converge_one(self, policy: NetworkPolicy, result: ConvergeResult) -> None:
        desired = policy.to_dict()
        actual = self._cache.get(NETWORK_POLICY, policy.namespace, policy.name)

        if actual is None:
            await self._client.create_network_policy(policy.namespace, desired)
            result.created += 1
            _logger.info("policy_created", policy=policy.name)
            return

        if specs_equal(desired["spec"], actual.get("spec")):
            result.unchanged += 1
            return

        # actual is the cache's private copy, so replacing its spec is safe.
        actual["spec"] = desired["spec"]
        await self._client.replace_network_policy(policy.namespace, policy.name, actual)
        result.updated += 1
        _logger.info("policy_updated", policy=policy.name)
