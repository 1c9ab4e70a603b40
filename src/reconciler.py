"""
Reconciler - runs one apply, prune or delete invocation.

The reconciler keeps no state between invocations; the only thing that
survives a run is the inventory stored on the cluster. Re-running a command
with the same declared set and cluster state is always safe.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from applier import Applier, ApplyResult
from deleter import Deleter, DeleteResult
from errors import (
    ClusterError,
    ConfigError,
    KapplyError,
    OperationError,
    ResourceError,
)
from inventory import split_inventory
from namespaces import NamespaceDefaulter
from plugins.registry import ProviderRegistry
from pruner import Pruner, PruneResult
from resources import DeclaredResource, ResourceReference

logger = logging.getLogger(__name__)


class Operation(Enum):
    """Operations the reconciler can run."""

    APPLY = "apply"
    PRUNE = "prune"
    DELETE = "delete"


class ReconcilePhase(Enum):
    """Phases of a single invocation."""

    IDLE = "idle"
    LOADING = "loading"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ReconcileResult:
    """Result of one invocation."""

    operation: Operation
    phase: ReconcilePhase = ReconcilePhase.IDLE
    success: bool = False
    resources: int = 0
    created: List[ResourceReference] = field(default_factory=list)
    updated: List[ResourceReference] = field(default_factory=list)
    pruned: List[ResourceReference] = field(default_factory=list)
    deleted: List[ResourceReference] = field(default_factory=list)
    error_message: Optional[str] = None
    failed_references: List[ResourceReference] = field(default_factory=list)
    duration_seconds: float = 0.0


class Reconciler:
    """
    Orchestrates the applier, pruner and deleter for one declared set.

    The apply/prune/delete methods raise on failure. run() loads a path,
    executes one operation and reports the outcome as a ReconcileResult.
    """

    def __init__(
        self,
        applier: Applier,
        pruner: Pruner,
        deleter: Deleter,
        providers: Optional[ProviderRegistry] = None,
        timeout: Optional[float] = None,
        defaulter: Optional[NamespaceDefaulter] = None,
    ):
        self.applier = applier
        self.pruner = pruner
        self.deleter = deleter
        self.providers = providers or ProviderRegistry()
        self.timeout = timeout
        self.defaulter = defaulter

    async def load(self, path: str) -> List[DeclaredResource]:
        """Load the declared resources of a path through the providers."""
        return await self.providers.get_config(path)

    async def normalize(
        self, resources: Sequence[DeclaredResource]
    ) -> List[DeclaredResource]:
        """Give every resource the namespace the cluster will store it in."""
        if self.defaulter is None:
            return list(resources)
        return await self.defaulter.resources(resources)

    async def apply(self, resources: Sequence[DeclaredResource]) -> ApplyResult:
        """Create or update every declared resource and record the inventory."""
        resources = await self._prepare(resources)
        return await self.applier.apply(resources)

    async def prune(self, resources: Sequence[DeclaredResource]) -> PruneResult:
        """Delete previously applied resources that are no longer declared."""
        resources = await self._prepare(resources)
        return await self.pruner.prune(resources)

    async def delete(self, resources: Sequence[DeclaredResource]) -> DeleteResult:
        """Delete every declared resource and the inventory object."""
        resources = await self._prepare(resources)
        return await self.deleter.delete(resources)

    async def run(self, operation: Operation, path: str) -> ReconcileResult:
        """
        Load a path and run one operation on it.

        Failures never raise; they are reported through the result with
        phase FAILED and the references that failed.
        """
        result = ReconcileResult(operation=operation)
        start_time = time.monotonic()

        try:
            await asyncio.wait_for(self._run(operation, path, result), self.timeout)
            result.success = True
            result.phase = ReconcilePhase.DONE
            logger.info(f"{operation.value} of {path} completed")

        except asyncio.TimeoutError:
            # Only the overall deadline ends up here; see _run
            result.phase = ReconcilePhase.FAILED
            result.error_message = (
                f"{operation.value} did not finish within {self.timeout}s; "
                f"re-run the command to resume"
            )
            logger.error(result.error_message)

        except KapplyError as e:
            result.phase = ReconcilePhase.FAILED
            result.error_message = str(e)
            result.failed_references = self._failed_references(e)
            logger.error(f"{operation.value} of {path} failed: {e}")

        finally:
            result.duration_seconds = time.monotonic() - start_time

        return result

    async def _run(
        self, operation: Operation, path: str, result: ReconcileResult
    ) -> None:
        try:
            await self._execute(operation, path, result)
        except asyncio.TimeoutError as e:
            # Raised by a step, not by the deadline in run()
            raise KapplyError(f"{operation.value} of {path} timed out") from e

    async def _execute(
        self, operation: Operation, path: str, result: ReconcileResult
    ) -> None:
        result.phase = ReconcilePhase.LOADING
        resources = await self.load(path)
        result.resources = len(resources)

        result.phase = ReconcilePhase.EXECUTING
        logger.info(f"Running {operation.value} on {len(resources)} resources")

        if operation == Operation.APPLY:
            applied = await self.apply(resources)
            result.created = applied.created
            result.updated = applied.updated
        elif operation == Operation.PRUNE:
            pruned = await self.prune(resources)
            result.pruned = pruned.pruned
        elif operation == Operation.DELETE:
            deleted = await self.delete(resources)
            result.deleted = deleted.deleted
        else:
            raise ConfigError(f"Unknown operation: {operation}")

    async def _prepare(
        self, resources: Sequence[DeclaredResource]
    ) -> List[DeclaredResource]:
        # Rejects sets with more than one inventory object
        split_inventory(resources)
        return await self.normalize(resources)

    def _failed_references(self, error: KapplyError) -> List[ResourceReference]:
        if isinstance(error, OperationError):
            return error.references
        if isinstance(error, (ResourceError, ClusterError)) and error.reference:
            return [error.reference]
        return []
