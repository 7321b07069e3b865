"""Probe and metrics HTTP layer for nscontroller.

Exposes:
    create_app -- FastAPI application factory.
    build_app  -- Alias for create_app (used by nscontroller.app bootstrap).
"""

from nscontroller.api.app import create_app

build_app = create_app

__all__ = ["build_app", "create_app"]
