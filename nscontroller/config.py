"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from nscontroller.models.config import (
    APIConfig,
    ControllerConfig,
    KubeConfig,
    LabelConfig,
    LogConfig,
    NSControllerConfig,
)

KNOWN_CONTROLLERS = ("label", "network")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"NSCONTROLLER_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None, max_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_domain(value: str) -> str:
    if not re.match(r"^[a-z0-9]([a-z0-9.-]*[a-z0-9])?$", value):
        raise ValueError(f"Invalid label domain: {value!r}")
    return value


def parse_controllers(value: str) -> tuple[str, ...]:
    """Parse a comma-separated controller list, preserving order and dropping repeats."""
    names: list[str] = []
    for raw in value.split(","):
        name = raw.strip().lower()
        if not name:
            continue
        if name not in KNOWN_CONTROLLERS:
            raise ValueError(f"Unknown controller: {name!r}. Must be one of {KNOWN_CONTROLLERS}")
        if name not in names:
            names.append(name)
    if not names:
        raise ValueError("At least one controller must be enabled")
    return tuple(names)


def load_config() -> NSControllerConfig:
    """Load configuration from NSCONTROLLER_* environment variables."""
    base_delay = _env_float("RETRY_BASE_DELAY", 0.5, min_val=0.01)
    return NSControllerConfig(
        labels=LabelConfig(
            domain=_validate_domain(_env("LABEL_DOMAIN", "statcan.gc.ca")),
        ),
        controller=ControllerConfig(
            enabled=parse_controllers(_env("CONTROLLERS", "label,network")),
            workers=_env_int("WORKERS", 2, min_val=1, max_val=32),
            max_retries=_env_int("MAX_RETRIES", 0, min_val=0),
            retry_base_delay=base_delay,
            retry_max_delay=_env_float("RETRY_MAX_DELAY", 300.0, min_val=base_delay),
        ),
        kube=KubeConfig(
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0, min_val=1.0, max_val=300.0),
            resync_seconds=_env_int("RESYNC_SECONDS", 300, min_val=30),
            cache_sync_timeout=_env_float("CACHE_SYNC_TIMEOUT", 120.0, min_val=1.0),
        ),
        api=APIConfig(
            port=_env_int("API_PORT", 8080, min_val=1024, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
