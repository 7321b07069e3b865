"""Structured logging configuration using structlog.

Workers bind the controller name and namespace key into contextvars for the
duration of a reconcile pass, so every line emitted by the synthesizers and
the converger carries them without threading a logger through.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


def setup_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a component name."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]


@contextmanager
def reconcile_context(controller: str, key: str) -> Iterator[None]:
    """Bind ``controller`` and ``namespace`` to every log line inside the block."""
    tokens = structlog.contextvars.bind_contextvars(controller=controller, namespace=key)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
