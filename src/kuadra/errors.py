"""Error taxonomy shared by the reconcilers and their collaborators.

Not-found and already-exists outcomes are modelled as exceptions so that
capability implementations can translate SDK-specific errors once, at the
boundary. Everything else raised by a provider or store is propagated as-is.
"""

from __future__ import annotations


class KuadraError(Exception):
    """Base class for operator errors."""

    pass


class NotFoundError(KuadraError):
    """Raised when a record or resource does not exist."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} '{location}' not found")


class AlreadyExistsError(KuadraError):
    """Raised by create operations when the target already exists."""

    def __init__(self, kind: str, name: str, namespace: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} '{location}' already exists")


class ConflictError(KuadraError):
    """Raised when an update carries a stale resource version.

    Retryable: the caller must re-fetch the record and run the cycle again.
    """

    def __init__(self, kind: str, name: str, resource_version: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.resource_version = resource_version
        super().__init__(
            f"{kind} '{name}' was modified concurrently (resourceVersion={resource_version})"
        )


class ReconcileCancelledError(KuadraError):
    """Raised when a reconcile cycle is cancelled between external calls."""

    pass


class CredentialStoreError(KuadraError):
    """Raised when a credential Secret does not hold what was just written to it."""

    def __init__(self, namespace: str, name: str, field: str) -> None:
        self.namespace = namespace
        self.name = name
        self.field = field
        super().__init__(f"Secret '{namespace}/{name}' has no '{field}' after write")
