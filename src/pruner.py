"""
Pruner - removes objects of earlier generations that are no longer declared.

The previous generation is read from the live inventory object. Everything
recorded there but missing from the declared set is deleted, then the
inventory is rewritten to hold only the declared set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from cluster import ResourceStore
from config import ApplyConfig
from errors import (
    ClusterError,
    DeleteError,
    NotFoundError,
    OperationError,
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
from namespaces import NamespaceDefaulter
from resources import DeclaredResource, ResourceReference, crd_scopes, delete_tiers

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Result of pruning a resource set."""

    pruned: List[ResourceReference] = field(default_factory=list)
    already_absent: List[ResourceReference] = field(default_factory=list)
    inventory: Optional[InventoryRecord] = None


async def delete_reference(
    store: ResourceStore, semaphore: asyncio.Semaphore, reference: ResourceReference
) -> bool:
    """
    Delete one object, treating an absent object as success.

    Returns:
        True if the object was deleted, False if it was already gone

    Raises:
        DeleteError: If the cluster rejected the delete
    """
    async with semaphore:
        try:
            await store.delete(reference)
            return True
        except (NotFoundError, TypeNotRegisteredError):
            # An object of a kind the cluster no longer serves is gone too
            return False
        except ClusterError as e:
            raise DeleteError(reference, e)


class Pruner:
    """Deletes stale members of the previous generation."""

    def __init__(
        self,
        store: ResourceStore,
        config: Optional[ApplyConfig] = None,
        defaulter: Optional[NamespaceDefaulter] = None,
    ):
        self.store = store
        self.config = config or ApplyConfig()
        self.defaulter = defaulter
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_operations)

    async def prune(self, resources: Sequence[DeclaredResource]) -> PruneResult:
        """
        Prune objects recorded in the live inventory but no longer declared.

        Every stale deletion is attempted. References that could not be
        deleted stay in the rewritten inventory so a later prune retries them.

        Args:
            resources: The declared resource set

        Returns:
            PruneResult listing pruned references

        Raises:
            ConfigError: If the set has more than one inventory object
            DecodeError: If the live inventory annotation is malformed
            ConflictError: If the inventory object changed concurrently
            OperationError: If one or more stale objects could not be deleted
        """
        result = PruneResult()
        inventory, _ = split_inventory(resources)
        if inventory is None:
            logger.info("No inventory object in resource set, nothing to prune")
            return result

        current = current_set(resources)

        try:
            live = await self.store.get(inventory.reference)
        except NotFoundError:
            logger.warning(
                f"Inventory object {inventory.reference} not found, "
                f"nothing to prune"
            )
            return result

        previous = read_record(live).current
        if self.defaulter is not None:
            # Older inventories may record an object without the namespace
            # the cluster filed it under
            previous = await self.defaulter.references(
                previous, crd_scopes(resources)
            )
        # The inventory object is never a stale member of itself
        stale = previous - current - {inventory.reference}
        logger.info(
            f"Pruning {len(stale)} of {len(previous)} previously applied resources"
        )

        failures = await self._delete_stale(stale, result)

        record = InventoryRecord(
            current=current | frozenset(f.reference for f in failures),
            hash=inventory.annotations.get(INVENTORY_HASH_ANNOTATION),
        )
        await self._write_inventory(live, record)
        result.inventory = record

        if failures:
            raise OperationError("prune", failures)
        return result

    async def _delete_stale(
        self, stale: InventorySet, result: PruneResult
    ) -> List[DeleteError]:
        """Delete stale references tier by tier, instances before CRDs."""
        failures: List[DeleteError] = []

        for tier in delete_tiers(sorted(stale, key=str), key=lambda r: r):
            outcomes = await asyncio.gather(
                *[delete_reference(self.store, self.semaphore, r) for r in tier],
                return_exceptions=True,
            )
            for reference, outcome in zip(tier, outcomes):
                if isinstance(outcome, DeleteError):
                    logger.error(f"Failed to prune {reference}: {outcome.cause}")
                    failures.append(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                elif outcome:
                    logger.info(f"Pruned {reference}")
                    result.pruned.append(reference)
                else:
                    result.already_absent.append(reference)

        return failures

    async def _write_inventory(self, live: dict, record: InventoryRecord) -> None:
        """Rewrite the live inventory, conditioned on the version read earlier."""
        obj = write_record(live, record)
        # Drop server-populated fields that must not be sent back
        obj.get("metadata", {}).pop("managedFields", None)
        obj.pop("status", None)
        await self.store.update(obj)
        logger.info(f"Inventory now records {len(record.current)} resources")
