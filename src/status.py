"""
Status - reports whether each declared resource exists on the cluster.

Readiness and health are out of scope; a resource is Current when an object
with its reference exists.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Sequence

from tabulate import tabulate

from cluster import ResourceStore
from errors import KapplyError, NotFoundError
from resources import DeclaredResource, ResourceReference

logger = logging.getLogger(__name__)

CURRENT = "Current"
NOT_FOUND = "NotFound"
UNKNOWN = "Unknown"


@dataclass
class ResourceStatus:
    """Presence of one declared resource."""

    reference: ResourceReference
    status: str
    message: str = ""


async def _resource_status(
    store: ResourceStore, reference: ResourceReference
) -> ResourceStatus:
    try:
        await store.get(reference)
        return ResourceStatus(reference, CURRENT)
    except NotFoundError:
        return ResourceStatus(reference, NOT_FOUND)
    except KapplyError as e:
        logger.warning(f"Could not get status of {reference}: {e}")
        return ResourceStatus(reference, UNKNOWN, str(e))


async def collect_status(
    store: ResourceStore, resources: Sequence[DeclaredResource]
) -> List[ResourceStatus]:
    """Look up every declared resource, in declaration order."""
    return list(
        await asyncio.gather(
            *[_resource_status(store, r.reference) for r in resources]
        )
    )


def format_status(statuses: Sequence[ResourceStatus]) -> str:
    """Render statuses as the text printed by the status command."""
    rows = [
        [
            s.reference.kind,
            s.reference.namespace or "-",
            s.reference.name,
            s.status,
            s.message,
        ]
        for s in statuses
    ]
    table = tabulate(
        rows, headers=["Kind", "Namespace", "Name", "Status", "Message"]
    )
    return f"Resources: {len(statuses)}\n{table}" if rows else "Resources: 0"
