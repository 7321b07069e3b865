"""Core data structures for nscontroller."""

from nscontroller.models.config import NSControllerConfig
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
from nscontroller.models.resources import (
    CacheReadiness,
    DependentKind,
    DependentRef,
    EndpointPort,
    EndpointSubset,
    LabelCorrection,
    NamespaceSnapshot,
)

__all__ = [
    "CacheReadiness",
    "DependentKind",
    "DependentRef",
    "EgressRule",
    "EndpointPort",
    "EndpointSubset",
    "IPBlock",
    "IngressRule",
    "LabelCorrection",
    "LabelSelector",
    "NSControllerConfig",
    "NamespaceSnapshot",
    "NetworkPolicy",
    "OwnerReference",
    "PolicyPeer",
    "PolicyPort",
    "PolicySpec",
    "SelectorRequirement",
]
