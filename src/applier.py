"""
Applier - create-or-update for a declared resource set.

Each resource is looked up by reference, then created if absent or replaced
with the live resourceVersion attached so the write is conditioned on it.

A CustomResourceDefinition and an instance of the kind it defines may be
applied in the same batch. The cluster registers the new kind
asynchronously, so writes that fail because the kind is not served yet are
retried with exponential backoff until the kind shows up or the retry budget
runs out.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from cluster import ResourceStore
from config import ApplyConfig
from errors import (
    ApplyError,
    ClusterError,
    ConflictError,
    NotFoundError,
    TypeNotRegisteredError,
)
from inventory import (
    INVENTORY_HASH_ANNOTATION,
    InventoryRecord,
    InventorySet,
    current_set,
    read_record,
    split_inventory,
    write_record,
)
from resources import (
    DeclaredResource,
    ResourceReference,
    is_prerequisite,
    sort_for_apply,
)

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


@dataclass
class ApplyResult:
    """Result of applying a resource set."""

    created: List[ResourceReference] = field(default_factory=list)
    updated: List[ResourceReference] = field(default_factory=list)
    inventory: Optional[InventoryRecord] = None

    @property
    def applied(self) -> List[ResourceReference]:
        return self.created + self.updated


@dataclass
class AttemptOutcome:
    """Outcome of one create-or-update attempt."""

    action: Optional[str] = None  # None while the kind is not registered
    obj: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.action is None


@dataclass
class PendingRetry:
    """
    Retry state for a resource whose kind is not registered yet.

    Delays grow as base_delay * 2^(attempts-1), capped at max_delay, with
    ±jitter_factor jitter, and never run past the deadline.
    """

    reference: ResourceReference
    deadline: float
    max_attempts: int
    base_delay: float
    max_delay: float
    jitter_factor: float
    attempts: int = 0
    last_error: Optional[str] = None

    def record_failure(self, error: Optional[str]) -> None:
        self.attempts += 1
        self.last_error = error

    def exhausted(self, now: float) -> bool:
        return self.attempts >= self.max_attempts or now >= self.deadline

    def next_delay(self, now: float) -> float:
        delay = min(
            self.base_delay * 2 ** min(max(self.attempts - 1, 0), 10),
            self.max_delay,
        )
        delay *= 1 + (random.random() * 2 - 1) * self.jitter_factor
        return max(0.0, min(delay, self.deadline - now))


class Applier:
    """Creates or updates every resource of a declared set."""

    def __init__(self, store: ResourceStore, config: Optional[ApplyConfig] = None):
        self.store = store
        self.config = config or ApplyConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_operations)

    async def apply(self, resources: Sequence[DeclaredResource]) -> ApplyResult:
        """
        Apply a declared resource set.

        Prerequisite kinds (namespaces, CRDs) go first, then the inventory
        object, then everything else. The first unrecoverable error stops the
        apply; resources already written stay in place.

        Args:
            resources: Declared resources in declaration order

        Returns:
            ApplyResult listing created and updated references

        Raises:
            ConfigError: If the set has more than one inventory object
            ConflictError: If the inventory object changed concurrently
            ApplyError: If a resource could not be applied
        """
        result = ApplyResult()
        inventory, others = split_inventory(resources)

        ordered = sort_for_apply(others, key=lambda r: r.reference)
        prerequisites = [r for r in ordered if is_prerequisite(r.reference)]
        remaining = [r for r in ordered if not is_prerequisite(r.reference)]

        await self._apply_all(prerequisites, result)

        if inventory is not None:
            outcome = await self._apply_resource(
                inventory, inventory_current=current_set(others)
            )
            self._record(result, inventory.reference, outcome)
            result.inventory = read_record(outcome.obj)
            logger.info(
                f"Recorded {len(result.inventory.current)} references in "
                f"inventory {inventory.reference}"
            )

        await self._apply_all(remaining, result)

        logger.info(
            f"Applied {len(result.applied)} resources "
            f"({len(result.created)} created, {len(result.updated)} updated)"
        )
        return result

    async def _apply_all(
        self, resources: List[DeclaredResource], result: ApplyResult
    ) -> None:
        """Apply resources concurrently, stopping at the first failure."""
        if not resources:
            return

        tasks = [
            asyncio.create_task(self._apply_resource(resource))
            for resource in resources
        ]
        references = {task: r.reference for task, r in zip(tasks, resources)}

        try:
            pending = set(tasks)
            while pending:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_EXCEPTION
                )
                for task in done:
                    # Re-raises the first failure; the finally block
                    # cancels whatever is still running
                    self._record(result, references[task], task.result())
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    def _record(
        self,
        result: ApplyResult,
        reference: ResourceReference,
        outcome: AttemptOutcome,
    ) -> None:
        if outcome.action == CREATED:
            result.created.append(reference)
        else:
            result.updated.append(reference)

    async def _apply_resource(
        self,
        resource: DeclaredResource,
        inventory_current: Optional[InventorySet] = None,
    ) -> AttemptOutcome:
        """Apply one resource, waiting out registration of its kind."""
        loop = asyncio.get_running_loop()
        retry: Optional[PendingRetry] = None

        while True:
            async with self.semaphore:
                outcome = await self._attempt(resource, inventory_current)
            if not outcome.pending:
                return outcome

            now = loop.time()
            if retry is None:
                retry = PendingRetry(
                    reference=resource.reference,
                    deadline=now + self.config.registration_timeout,
                    max_attempts=self.config.registration_max_attempts,
                    base_delay=self.config.backoff_base_delay,
                    max_delay=self.config.backoff_max_delay,
                    jitter_factor=self.config.backoff_jitter_factor,
                )
            retry.record_failure(outcome.error)

            if retry.exhausted(now):
                raise ApplyError(
                    resource.reference,
                    f"kind {resource.reference.kind} still not registered after "
                    f"{retry.attempts} attempts: {retry.last_error}",
                )

            delay = retry.next_delay(now)
            logger.info(
                f"Kind {resource.reference.kind} not registered yet, retrying "
                f"{resource.reference} in {delay:.2f}s "
                f"(attempt {retry.attempts}/{retry.max_attempts})"
            )
            await asyncio.sleep(delay)

    async def _attempt(
        self,
        resource: DeclaredResource,
        inventory_current: Optional[InventorySet] = None,
    ) -> AttemptOutcome:
        """Run one lookup followed by create or update."""
        reference = resource.reference

        try:
            try:
                live: Optional[Dict[str, Any]] = await self.store.get(reference)
            except NotFoundError:
                live = None

            obj = resource.to_object()
            if inventory_current is not None:
                obj = self._merge_inventory(resource, obj, live, inventory_current)

            if live is None:
                await self.store.create(obj)
                return AttemptOutcome(action=CREATED, obj=obj)

            version = (live.get("metadata") or {}).get("resourceVersion")
            if version:
                obj.setdefault("metadata", {})["resourceVersion"] = version
            await self.store.update(obj)
            return AttemptOutcome(action=UPDATED, obj=obj)

        except TypeNotRegisteredError as e:
            return AttemptOutcome(error=str(e))
        except ConflictError:
            if inventory_current is not None:
                raise
            raise ApplyError(reference, "object was modified concurrently")
        except ClusterError as e:
            raise ApplyError(reference, e)

    def _merge_inventory(
        self,
        resource: DeclaredResource,
        obj: Dict[str, Any],
        live: Optional[Dict[str, Any]],
        current: InventorySet,
    ) -> Dict[str, Any]:
        """
        Build the inventory object to write.

        References of the previous generation stay recorded next to the new
        ones until a prune removes them.
        """
        previous = read_record(live).current if live is not None else frozenset()
        record = InventoryRecord(
            current=previous | current,
            hash=resource.annotations.get(INVENTORY_HASH_ANNOTATION),
        )
        return write_record(obj, record)
