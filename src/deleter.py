"""
Deleter - removes every object of a declared resource set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from cluster import ResourceStore
from config import ApplyConfig
from errors import DeleteError, OperationError
from inventory import split_inventory
from pruner import delete_reference
from resources import DeclaredResource, ResourceReference, delete_tiers

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    """Result of deleting a resource set."""

    deleted: List[ResourceReference] = field(default_factory=list)
    already_absent: List[ResourceReference] = field(default_factory=list)


class Deleter:
    """Deletes a declared set, instances before the kinds that define them."""

    def __init__(self, store: ResourceStore, config: Optional[ApplyConfig] = None):
        self.store = store
        self.config = config or ApplyConfig()
        self.semaphore = asyncio.Semaphore(self.config.max_concurrent_operations)

    async def delete(self, resources: Sequence[DeclaredResource]) -> DeleteResult:
        """
        Delete every declared resource, then the inventory object.

        Deleting an object that is already gone is not an error. If any
        deletion fails, the inventory object is kept so the set can still
        be pruned or deleted later.

        Raises:
            ConfigError: If the set has more than one inventory object
            OperationError: If one or more objects could not be deleted
        """
        result = DeleteResult()
        inventory, others = split_inventory(resources)
        failures: List[DeleteError] = []

        for tier in delete_tiers(others, key=lambda r: r.reference):
            failures.extend(await self._delete_tier(tier, result))

        if inventory is not None:
            if failures:
                logger.warning(
                    f"Keeping inventory object {inventory.reference} because "
                    f"{len(failures)} deletions failed"
                )
            else:
                failures.extend(await self._delete_tier([inventory], result))

        logger.info(
            f"Deleted {len(result.deleted)} resources "
            f"({len(result.already_absent)} already absent)"
        )

        if failures:
            raise OperationError("delete", failures)
        return result

    async def _delete_tier(
        self, tier: List[DeclaredResource], result: DeleteResult
    ) -> List[DeleteError]:
        outcomes = await asyncio.gather(
            *[
                delete_reference(self.store, self.semaphore, r.reference)
                for r in tier
            ],
            return_exceptions=True,
        )

        failures = []
        for resource, outcome in zip(tier, outcomes):
            if isinstance(outcome, DeleteError):
                logger.error(f"Failed to delete {resource.reference}: {outcome.cause}")
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome:
                logger.info(f"Deleted {resource.reference}")
                result.deleted.append(resource.reference)
            else:
                result.already_absent.append(resource.reference)
        return failures
