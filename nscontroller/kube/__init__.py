"""Cluster API access for nscontroller."""

from nscontroller.kube.client import ClusterClient, ListTarget, load_kube_config

__all__ = ["ClusterClient", "ListTarget", "load_kube_config"]
