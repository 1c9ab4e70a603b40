"""
Inventory codec - the persisted record of which objects a declared set owns.

The record lives in two annotations on one object of the declared set
(the inventory object):

    kustomize.config.k8s.io/Inventory      {"current": {"<key>": null, ...}}
    kustomize.config.k8s.io/InventoryHash  opaque token chosen by the caller
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from errors import ConfigError, DecodeError
from resources import DeclaredResource, ResourceReference

logger = logging.getLogger(__name__)

INVENTORY_ANNOTATION = "kustomize.config.k8s.io/Inventory"
INVENTORY_HASH_ANNOTATION = "kustomize.config.k8s.io/InventoryHash"

InventorySet = FrozenSet[ResourceReference]


@dataclass(frozen=True)
class InventoryRecord:
    """One generation: the owned references plus the caller's hash token."""

    current: InventorySet = frozenset()
    hash: Optional[str] = None


def reference_key(reference: ResourceReference) -> str:
    return reference.key


def encode(inventory: Iterable[ResourceReference]) -> str:
    """Encode an inventory set as the inventory annotation value."""
    current = {key: None for key in sorted(reference_key(r) for r in inventory)}
    return json.dumps({"current": current}, separators=(",", ":"))


def decode(value: str) -> InventorySet:
    """
    Decode an inventory annotation value.

    Raises:
        DecodeError: If the value is not a well-formed inventory document
    """
    try:
        document = json.loads(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Inventory annotation is not valid JSON: {e}")

    if not isinstance(document, dict):
        raise DecodeError("Inventory annotation must be a JSON object")

    current = document.get("current") or {}
    if not isinstance(current, dict):
        raise DecodeError("Inventory 'current' field must be a JSON object")

    return frozenset(ResourceReference.from_key(key) for key in current)


def has_inventory(resource: DeclaredResource) -> bool:
    return INVENTORY_ANNOTATION in resource.annotations


def read_record(obj: Dict[str, Any]) -> InventoryRecord:
    """
    Read the inventory record stored on an object.

    An object without the inventory annotation yields an empty record.
    """
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(INVENTORY_ANNOTATION)
    current = decode(value) if value else frozenset()
    return InventoryRecord(
        current=current, hash=annotations.get(INVENTORY_HASH_ANNOTATION)
    )


def write_record(obj: Dict[str, Any], record: InventoryRecord) -> Dict[str, Any]:
    """Store a record in an object's annotations (mutates and returns obj)."""
    metadata = obj.setdefault("metadata", {})
    annotations = metadata.get("annotations") or {}
    annotations[INVENTORY_ANNOTATION] = encode(record.current)
    if record.hash is not None:
        annotations[INVENTORY_HASH_ANNOTATION] = record.hash
    else:
        annotations.pop(INVENTORY_HASH_ANNOTATION, None)
    metadata["annotations"] = annotations
    return obj


def split_inventory(
    resources: Iterable[DeclaredResource],
) -> Tuple[Optional[DeclaredResource], List[DeclaredResource]]:
    """
    Separate the inventory object from the rest of a declared set.

    Returns:
        Tuple of (inventory object or None, other resources in order)

    Raises:
        ConfigError: If more than one object carries the inventory annotation
    """
    inventory: List[DeclaredResource] = []
    others: List[DeclaredResource] = []
    for resource in resources:
        if has_inventory(resource):
            inventory.append(resource)
        else:
            others.append(resource)

    if len(inventory) > 1:
        names = ", ".join(str(r.reference) for r in inventory)
        raise ConfigError(
            f"Only one inventory object is allowed per resource set, found "
            f"{len(inventory)}: {names}"
        )

    return (inventory[0] if inventory else None), others


def current_set(resources: Iterable[DeclaredResource]) -> InventorySet:
    """References of a batch's non-inventory resources."""
    return frozenset(r.reference for r in resources if not has_inventory(r))
