"""
Error taxonomy.

Errors are split so callers can react correctly:
ConfigError stops before anything is sent to the cluster.
TypeNotRegisteredError is transient and retried by the applier.
ConflictError means the inventory changed underneath us; re-run the command.
OperationError aggregates every per-resource failure of one operation.
"""

from typing import Any, List, Optional


class KapplyError(Exception):
    """Base class for all kapply exceptions."""


class ConfigError(KapplyError):
    """Raised when declared resource input is malformed."""


class DecodeError(ConfigError):
    """Raised when an inventory annotation cannot be decoded."""


class ClusterError(KapplyError):
    """Raised when the cluster API rejects a request."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        reference: Optional[Any] = None,
    ):
        self.message = message
        self.status = status
        self.reason = reason
        self.reference = reference
        super().__init__(message)


class NotFoundError(ClusterError):
    """The requested object does not exist."""


class TypeNotRegisteredError(ClusterError):
    """The cluster does not (yet) serve the requested kind."""


class ConflictError(ClusterError):
    """The concurrency token sent with a write was stale."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            f"{message} (the object was modified concurrently; retry the command)",
            **kwargs,
        )


class ResourceError(KapplyError):
    """Terminal failure for a single resource."""

    action = "process"

    def __init__(self, reference: Any, cause: Any):
        self.reference = reference
        self.cause = cause
        super().__init__(f"failed to {self.action} {reference}: {cause}")


class ApplyError(ResourceError):
    """A resource could not be created or updated."""

    action = "apply"


class DeleteError(ResourceError):
    """A resource could not be deleted."""

    action = "delete"


class OperationError(KapplyError):
    """One or more resources failed during an operation."""

    def __init__(self, operation: str, failures: List[ResourceError]):
        self.operation = operation
        self.failures = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(
            f"{operation} failed for {len(self.failures)} resource(s): {details}"
        )

    @property
    def references(self) -> List[Any]:
        """References of every failed resource."""
        return [f.reference for f in self.failures]
