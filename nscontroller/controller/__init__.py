"""Controller package: work queue and reconciliation loop."""

from nscontroller.controller.loop import Controller, SyncFn
from nscontroller.controller.queue import WorkQueue

__all__ = ["Controller", "SyncFn", "WorkQueue"]
