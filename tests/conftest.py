"""Pytest configuration and fixtures."""

import copy
import dataclasses

import pytest

from cluster import ResourceStore
from config import ApplyConfig, Config, ClusterConfig, ProviderConfig
from errors import ConflictError, NotFoundError, TypeNotRegisteredError
from inventory import INVENTORY_ANNOTATION, INVENTORY_HASH_ANNOTATION
from resources import DeclaredResource, ResourceReference

BUILTIN_KINDS = {
    "Namespace",
    "ConfigMap",
    "Secret",
    "Service",
    "Deployment",
    "CustomResourceDefinition",
}

CLUSTER_SCOPED_KINDS = {"Namespace", "CustomResourceDefinition"}


class FakeCluster(ResourceStore):
    """
    In-memory ResourceStore.

    Kinds defined by a CustomResourceDefinition become servable only after
    `registration_delay` failed attempts, like a cluster that registers new
    kinds asynchronously.

    Like a real cluster, namespaced objects without a namespace are filed
    under `namespace` and cluster-scoped objects never carry one.
    """

    def __init__(self, registration_delay: int = 0, namespace: str = "default"):
        self.objects = {}
        self.namespace = namespace
        self.cluster_scoped = set(CLUSTER_SCOPED_KINDS)
        self.registration_delay = registration_delay
        self.registered = set(BUILTIN_KINDS)
        self.pending_kinds = {}
        self.fail_delete = {}
        self.fail_update = {}
        self.calls = []
        self._version = 0

    def _check_kind(self, reference):
        if reference.kind in self.registered:
            return
        remaining = self.pending_kinds.get(reference.kind)
        if remaining is not None:
            if remaining <= 0:
                self.registered.add(reference.kind)
                return
            self.pending_kinds[reference.kind] = remaining - 1
        raise TypeNotRegisteredError(
            f"Kind {reference.kind} is not served", reference=reference
        )

    def _locate(self, reference):
        """Reference under which the object is actually stored."""
        if reference.kind in self.cluster_scoped:
            namespace = ""
        else:
            namespace = reference.namespace or self.namespace
        return dataclasses.replace(reference, namespace=namespace)

    def _next_version(self):
        self._version += 1
        return str(self._version)

    def _store(self, obj):
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        reference = self._locate(ResourceReference.from_object(stored))
        if reference.namespace:
            metadata["namespace"] = reference.namespace
        else:
            metadata.pop("namespace", None)
        self.objects[reference] = stored

        if reference.kind == "CustomResourceDefinition":
            spec = stored.get("spec") or {}
            kind = spec.get("names", {}).get("kind")
            if kind and spec.get("scope") == "Cluster":
                self.cluster_scoped.add(kind)
            if kind and kind not in self.registered:
                self.pending_kinds.setdefault(kind, self.registration_delay)
        return copy.deepcopy(stored)

    async def get(self, reference):
        reference = self._locate(reference)
        self.calls.append(("get", reference))
        self._check_kind(reference)
        if reference not in self.objects:
            raise NotFoundError(f"{reference} not found", reference=reference)
        return copy.deepcopy(self.objects[reference])

    async def create(self, obj):
        reference = self._locate(ResourceReference.from_object(obj))
        self.calls.append(("create", reference))
        self._check_kind(reference)
        if reference in self.objects:
            raise ConflictError(f"{reference} already exists", reference=reference)
        return self._store(obj)

    async def update(self, obj):
        reference = self._locate(ResourceReference.from_object(obj))
        self.calls.append(("update", reference))
        self._check_kind(reference)
        if reference in self.fail_update:
            raise self.fail_update[reference]
        if reference not in self.objects:
            raise NotFoundError(f"{reference} not found", reference=reference)

        sent = (obj.get("metadata") or {}).get("resourceVersion")
        live = self.objects[reference]["metadata"]["resourceVersion"]
        if sent and sent != live:
            raise ConflictError(f"{reference} has changed", reference=reference)
        return self._store(obj)

    async def delete(self, reference):
        reference = self._locate(reference)
        self.calls.append(("delete", reference))
        if reference in self.fail_delete:
            raise self.fail_delete[reference]
        self._check_kind(reference)
        if reference not in self.objects:
            raise NotFoundError(f"{reference} not found", reference=reference)
        del self.objects[reference]

    async def list(self, group, version, kind, namespace=""):
        return [
            copy.deepcopy(obj)
            for ref, obj in self.objects.items()
            if ref.group == group
            and ref.version == version
            and ref.kind == kind
            and (not namespace or ref.namespace == namespace)
        ]

    async def is_namespaced(self, reference):
        if reference.kind not in self.registered:
            return None
        return reference.kind not in self.cluster_scoped

    def names(self):
        """Names of every stored object."""
        return sorted(ref.name for ref in self.objects)


def configmap(name, namespace="default", data=None):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data or {"key": "value"},
    }


def inventory_object(name="inventory", namespace="default", hash_value=None):
    annotations = {INVENTORY_ANNOTATION: ""}
    if hash_value is not None:
        annotations[INVENTORY_HASH_ANNOTATION] = hash_value
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": annotations,
        },
    }


def crd(kind="Widget", group="example.com", plural="widgets"):
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{plural}.{group}"},
        "spec": {
            "group": group,
            "names": {"kind": kind, "plural": plural},
            "scope": "Namespaced",
            "versions": [{"name": "v1", "served": True, "storage": True}],
        },
    }


def custom_resource(name, kind="Widget", group="example.com"):
    return {
        "apiVersion": f"{group}/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": "default"},
        "spec": {"size": 1},
    }


def declared(*objs):
    return [DeclaredResource(copy.deepcopy(o)) for o in objs]


@pytest.fixture
def cluster():
    """Empty in-memory cluster."""
    return FakeCluster()


@pytest.fixture
def apply_config():
    """Apply config with near-zero backoff so retries finish quickly."""
    return ApplyConfig(
        max_concurrent_operations=5,
        backoff_base_delay=0.001,
        backoff_max_delay=0.005,
        backoff_jitter_factor=0.0,
        registration_max_attempts=10,
        registration_timeout=5.0,
    )


@pytest.fixture
def config(apply_config):
    """Full config using the fast apply settings."""
    return Config(
        cluster=ClusterConfig(),
        apply=apply_config,
        providers=ProviderConfig(),
    )
