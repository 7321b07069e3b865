"""Cache layer for nscontroller.

Provides the in-memory watch cache the reconcile loop reads from. Watchers
in ``nscontroller.collector`` are the only writers.

Submodules:
    resource_cache  -- Per-kind object store with sync tracking and event dispatch.
"""

from nscontroller.cache.resource_cache import ResourceCache, ResourceEventHandler

__all__ = ["ResourceCache", "ResourceEventHandler"]
