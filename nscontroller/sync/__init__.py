"""Desired-state synthesis and convergence.

Submodules:
    labels    -- workload-id label propagation onto Pods and PVCs.
    network   -- NetworkPolicy synthesis from namespace labels and API endpoints.
    converge  -- minimal create/update of synthesized policies.
"""

from nscontroller.sync.converge import Converger, ConvergeResult
from nscontroller.sync.labels import LabelReconciler, compute_label_corrections
from nscontroller.sync.network import NetworkReconciler, synthesize_network_policies

__all__ = [
    "ConvergeResult",
    "Converger",
    "LabelReconciler",
    "NetworkReconciler",
    "compute_label_corrections",
    "synthesize_network_policies",
]
