"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class LabelConfig:
    """Label key vocabulary shared by every synthesizer.

    Keys are derived from a single domain so that a fork of the controller
    can move the whole contract to its own domain with one setting.
    """

    domain: str = "statcan.gc.ca"
    control_plane: str = "control-plane"

    @property
    def workload_id(self) -> str:
        return f"finance.{self.domain}/workload-id"

    @property
    def purpose(self) -> str:
        return f"namespace.{self.domain}/purpose"

    @property
    def allow_same_ns(self) -> str:
        return f"network.{self.domain}/allow-same-ns"

    @property
    def allow_ingress_controller(self) -> str:
        return f"network.{self.domain}/allow-ingress-controller"

    @property
    def allow_kube_apiserver(self) -> str:
        return f"network.{self.domain}/allow-kube-apiserver"


@dataclass
class ControllerConfig:
    """Reconciliation loop configuration."""

    enabled: tuple[str, ...] = ("label", "network")
    workers: int = 2
    max_retries: int = 0
    retry_base_delay: float = 0.5
    retry_max_delay: float = 300.0


@dataclass
class KubeConfig:
    """Cluster API access configuration."""

    request_timeout: float = 30.0
    resync_seconds: int = 300
    cache_sync_timeout: float = 120.0


@dataclass
class APIConfig:
    """Health and metrics endpoint configuration."""

    port: int = 8080


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class NSControllerConfig:
    """Top-level controller configuration."""

    labels: LabelConfig = field(default_factory=LabelConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    kube: KubeConfig = field(default_factory=KubeConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
