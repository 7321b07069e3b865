"""Collector package for nscontroller.

Keeps the watch cache current and turns cache notifications into namespace
keys for the controllers.

Submodules
----------
watcher   -- ResourceWatcher: list+watch loop, relist on 410, exponential back-off.
handlers  -- Event adapters mapping Namespace, Pod, PVC, Endpoints and
             NetworkPolicy changes to the owning namespace key.
"""

from nscontroller.collector.watcher import ResourceWatcher

__all__ = ["ResourceWatcher"]
