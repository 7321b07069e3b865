"""Exception hierarchy for the reconciliation engine.

Only the reconcile loop decides whether to retry; every other layer raises
one of these and lets it propagate.
"""

from __future__ import annotations


class NSControllerError(Exception):
    """Base class for all controller errors."""


class FatalStartupError(NSControllerError):
    """Raised when the process cannot reach a reconcilable state.

    Never retried: the cache did not finish its initial sync, or the
    cluster client could not be constructed.
    """


class SyncError(NSControllerError):
    """Raised when a reconcile pass lacks a required input (retried)."""


class ListFailure(NSControllerError):
    """Raised by a lister when dependents cannot be enumerated.

    Callers log it and continue with an empty result set.
    """


class TransientAPIError(NSControllerError):
    """A create/update call against the cluster API failed.

    Wraps ApiException, connection errors and request timeouts alike so the
    loop can treat them uniformly.
    """

    def __init__(
        self,
        operation: str,
        kind: str,
        namespace: str,
        name: str,
        status: int | None = None,
        reason: str = "",
    ) -> None:
        detail = f" ({status} {reason})" if status is not None else f" ({reason})" if reason else ""
        super().__init__(f"{operation} {kind} {namespace}/{name} failed{detail}")
        self.operation = operation
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.reason = reason

    @property
    def is_conflict(self) -> bool:
        return self.status == 409


class ConvergeError(NSControllerError):
    """One or more policies in a converge batch failed to apply."""

    def __init__(self, failures: list[TransientAPIError]) -> None:
        names = ", ".join(f"{f.namespace}/{f.name}" for f in failures)
        super().__init__(f"{len(failures)} policy write(s) failed: {names}")
        self.failures = failures
