"""
Resource model - references, declared resources and ordering.

A ResourceReference identifies a live object independently of its content.
A DeclaredResource pairs a declared document with its reference for the
duration of one command.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple, TypeVar

import yaml

from errors import ConfigError, DecodeError
from validation import validate_manifest

logger = logging.getLogger(__name__)

# Placeholders used in reference keys for empty fields
NO_GROUP = "~G"
NO_VERSION = "~V"
NO_KIND = "~K"
NO_NAMESPACE = "~X"
NO_NAME = "~N"

KEY_SEPARATOR = "|"
GVK_SEPARATOR = "_"

# Kinds that must exist before other objects can be applied, in apply order.
# Deletion walks this list backwards, after every other kind.
PREREQUISITE_KINDS = ("Namespace", "CustomResourceDefinition")

T = TypeVar("T")


@dataclass(frozen=True)
class ResourceReference:
    """Identity of a remote object: group/version/kind/namespace/name."""

    group: str
    version: str
    kind: str
    namespace: str
    name: str

    @property
    def api_version(self) -> str:
        """apiVersion string as written in manifests."""
        if self.group:
            return f"{self.group}/{self.version}"
        return self.version

    @property
    def key(self) -> str:
        """Canonical inventory key, e.g. ``~G_v1_ConfigMap|default|cm1``."""
        gvk = GVK_SEPARATOR.join(
            [
                self.group or NO_GROUP,
                self.version or NO_VERSION,
                self.kind or NO_KIND,
            ]
        )
        return KEY_SEPARATOR.join(
            [gvk, self.namespace or NO_NAMESPACE, self.name or NO_NAME]
        )

    @classmethod
    def from_key(cls, key: str) -> "ResourceReference":
        """
        Parse a canonical inventory key.

        Raises:
            DecodeError: If the key does not have the expected shape
        """
        parts = key.split(KEY_SEPARATOR)
        if len(parts) != 3:
            raise DecodeError(f"Invalid inventory key: {key!r}")
        gvk, namespace, name = parts
        gvk_parts = gvk.split(GVK_SEPARATOR)
        if len(gvk_parts) != 3:
            raise DecodeError(f"Invalid group/version/kind in inventory key: {key!r}")
        group, version, kind = gvk_parts

        return cls(
            group="" if group == NO_GROUP else group,
            version="" if version == NO_VERSION else version,
            kind="" if kind == NO_KIND else kind,
            namespace="" if namespace == NO_NAMESPACE else namespace,
            name="" if name == NO_NAME else name,
        )

    @classmethod
    def from_object(cls, obj: Dict[str, Any]) -> "ResourceReference":
        """Derive the reference of a manifest or live object."""
        group, _, version = (obj.get("apiVersion") or "").rpartition("/")
        metadata = obj.get("metadata") or {}
        return cls(
            group=group,
            version=version,
            kind=obj.get("kind") or "",
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name") or "",
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}.{self.api_version} {self.namespace}/{self.name}"
        return f"{self.kind}.{self.api_version} {self.name}"


@dataclass
class DeclaredResource:
    """A declared document plus its derived reference."""

    obj: Dict[str, Any]
    reference: ResourceReference = field(init=False)

    def __post_init__(self):
        self.reference = ResourceReference.from_object(self.obj)

    @property
    def annotations(self) -> Dict[str, str]:
        return (self.obj.get("metadata") or {}).get("annotations") or {}

    def to_object(self) -> Dict[str, Any]:
        """Return a deep copy of the document, safe to mutate."""
        return copy.deepcopy(self.obj)

    def with_namespace(self, namespace: str) -> "DeclaredResource":
        """Return a copy declared in namespace ('' for cluster scope)."""
        obj = self.to_object()
        metadata = obj.setdefault("metadata", {})
        if namespace:
            metadata["namespace"] = namespace
        else:
            metadata.pop("namespace", None)
        return DeclaredResource(obj)


def crd_scopes(resources: Iterable[DeclaredResource]) -> Dict[Tuple[str, str], bool]:
    """
    Scope of the kinds defined by CustomResourceDefinitions in a batch.

    Returns:
        Mapping of (group, kind) to True for namespaced kinds
    """
    scopes = {}
    for resource in resources:
        if resource.reference.kind != "CustomResourceDefinition":
            continue
        spec = resource.obj.get("spec") or {}
        kind = (spec.get("names") or {}).get("kind")
        if kind:
            scopes[(spec.get("group") or "", kind)] = (
                spec.get("scope", "Namespaced") == "Namespaced"
            )
    return scopes


def prerequisite_rank(reference: ResourceReference) -> int:
    """Apply rank of a reference; prerequisite kinds sort first."""
    try:
        return PREREQUISITE_KINDS.index(reference.kind)
    except ValueError:
        return len(PREREQUISITE_KINDS)


def is_prerequisite(reference: ResourceReference) -> bool:
    return reference.kind in PREREQUISITE_KINDS


def sort_for_apply(
    items: Iterable[T], key: Callable[[T], ResourceReference]
) -> List[T]:
    """Stable sort putting prerequisite kinds before everything else."""
    return sorted(items, key=lambda item: prerequisite_rank(key(item)))


def delete_tiers(
    items: Iterable[T], key: Callable[[T], ResourceReference]
) -> List[List[T]]:
    """
    Group items into deletion tiers, reverse of apply order.

    Instances of custom kinds go in the first tier and the
    CustomResourceDefinitions that define them in a later one.
    """
    tiers: Dict[int, List[T]] = {}
    for item in items:
        tiers.setdefault(prerequisite_rank(key(item)), []).append(item)
    return [tiers[rank] for rank in sorted(tiers, reverse=True)]


def _expand_lists(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Flatten ``kind: List`` documents into their items."""
    kind = document.get("kind") or ""
    if kind == "List" or (kind.endswith("List") and "items" in document):
        expanded = []
        for item in document.get("items") or []:
            expanded.extend(_expand_lists(item))
        return expanded
    return [document]


def parse_manifests(text: str, source: str = "<input>") -> List[DeclaredResource]:
    """
    Parse a YAML (or JSON) stream into declared resources.

    Args:
        text: Multi-document YAML text
        source: Where the text came from, used in error messages

    Returns:
        Declared resources in document order

    Raises:
        ConfigError: If the text is not valid YAML or a document is not
            a valid resource
    """
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}")

    resources = []
    for document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ConfigError(
                f"Invalid document in {source}: expected a mapping, "
                f"got {type(document).__name__}"
            )
        for obj in _expand_lists(document):
            is_valid, error = validate_manifest(obj)
            if not is_valid:
                raise ConfigError(f"Invalid resource in {source}: {error}")
            resources.append(DeclaredResource(obj))

    logger.debug(f"Parsed {len(resources)} resources from {source}")
    return resources
