"""
Namespace defaulting for declared resources and recorded references.

The cluster files a namespaced object declared without a namespace under the
configured default namespace, and ignores a namespace given to a
cluster-scoped object. References are normalized the same way before they
are compared or recorded, so one object never has two inventory keys.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from cluster import ResourceStore
from inventory import InventorySet
from resources import DeclaredResource, ResourceReference, crd_scopes

logger = logging.getLogger(__name__)

Scopes = Dict[Tuple[str, str], bool]


class NamespaceDefaulter:
    """Resolves the namespace the cluster actually stores an object in."""

    def __init__(self, store: ResourceStore, default_namespace: str = "default"):
        self.store = store
        self.default_namespace = default_namespace

    async def is_namespaced(
        self, reference: ResourceReference, scopes: Optional[Scopes] = None
    ) -> Optional[bool]:
        """
        Scope of a reference's kind, or None when it is not known.

        Kinds defined by a CustomResourceDefinition of the same batch are
        resolved from that definition, since the cluster may not serve them
        yet.
        """
        if scopes and (reference.group, reference.kind) in scopes:
            return scopes[(reference.group, reference.kind)]
        return await self.store.is_namespaced(reference)

    async def reference(
        self, reference: ResourceReference, scopes: Optional[Scopes] = None
    ) -> ResourceReference:
        namespaced = await self.is_namespaced(reference, scopes)
        if namespaced is None:
            return reference
        if not namespaced:
            namespace = ""
        else:
            namespace = reference.namespace or self.default_namespace

        if namespace == reference.namespace:
            return reference
        normalized = ResourceReference(
            reference.group,
            reference.version,
            reference.kind,
            namespace,
            reference.name,
        )
        logger.debug(f"Normalized {reference} to {normalized}")
        return normalized

    async def references(
        self, references: Iterable[ResourceReference], scopes: Optional[Scopes] = None
    ) -> InventorySet:
        references = list(references)
        normalized = await asyncio.gather(
            *[self.reference(r, scopes) for r in references]
        )
        return frozenset(normalized)

    async def resources(
        self, resources: Sequence[DeclaredResource]
    ) -> List[DeclaredResource]:
        """Return the resources with the namespace the cluster will use."""
        scopes = crd_scopes(resources)
        normalized = await asyncio.gather(
            *[self.reference(r.reference, scopes) for r in resources]
        )
        return [
            resource
            if reference == resource.reference
            else resource.with_namespace(reference.namespace)
            for resource, reference in zip(resources, normalized)
        ]
