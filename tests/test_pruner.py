"""Unit tests for pruner.py - removal of objects no longer declared."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from applier import Applier
from conftest import configmap, crd, custom_resource, declared, inventory_object
from errors import ClusterError, ConfigError, ConflictError, NotFoundError
from errors import DecodeError, DeleteError, OperationError, TypeNotRegisteredError
from inventory import INVENTORY_ANNOTATION, INVENTORY_HASH_ANNOTATION, read_record
from namespaces import NamespaceDefaulter
from pruner import Pruner, delete_reference
from resources import ResourceReference

CM1 = ResourceReference("", "v1", "ConfigMap", "default", "cm1")
CM2 = ResourceReference("", "v1", "ConfigMap", "default", "cm2")
CM3 = ResourceReference("", "v1", "ConfigMap", "default", "cm3")
INV = ResourceReference("", "v1", "ConfigMap", "default", "inventory")


@pytest.mark.asyncio
class TestDeleteReference:
    """Tests for the shared delete helper."""

    async def test_deleted(self):
        store = AsyncMock()
        assert await delete_reference(store, asyncio.Semaphore(1), CM1) is True
        store.delete.assert_awaited_once_with(CM1)

    async def test_not_found_is_absent(self):
        store = AsyncMock()
        store.delete.side_effect = NotFoundError("gone")
        assert await delete_reference(store, asyncio.Semaphore(1), CM1) is False

    async def test_unregistered_kind_is_absent(self):
        store = AsyncMock()
        store.delete.side_effect = TypeNotRegisteredError("no such kind")
        assert await delete_reference(store, asyncio.Semaphore(1), CM1) is False

    async def test_other_errors_wrapped(self):
        store = AsyncMock()
        store.delete.side_effect = ClusterError("forbidden", status=403)
        with pytest.raises(DeleteError) as exc_info:
            await delete_reference(store, asyncio.Semaphore(1), CM1)
        assert exc_info.value.reference == CM1
        assert "failed to delete" in str(exc_info.value)


@pytest.mark.asyncio
class TestPrune:
    """Tests for Pruner.prune."""

    async def _apply(self, cluster, apply_config, *objs):
        await Applier(cluster, apply_config).apply(declared(*objs))

    async def test_prunes_exact_difference(self, cluster, apply_config):
        await self._apply(
            cluster,
            apply_config,
            configmap("cm1"),
            configmap("cm2"),
            configmap("cm3"),
            inventory_object(),
        )
        pruner = Pruner(cluster, apply_config)

        result = await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert sorted(r.name for r in result.pruned) == ["cm2", "cm3"]
        assert cluster.names() == ["cm1", "inventory"]
        assert result.inventory.current == frozenset({CM1})
        assert read_record(cluster.objects[INV]).current == frozenset({CM1})

    async def test_never_deletes_unrecorded_objects(self, cluster, apply_config):
        # Created outside of any inventory
        await self._apply(cluster, apply_config, configmap("stranger"))
        await self._apply(cluster, apply_config, configmap("cm1"), inventory_object())
        pruner = Pruner(cluster, apply_config)

        await pruner.prune(declared(inventory_object()))

        assert "stranger" in cluster.names()
        assert "cm1" not in cluster.names()

    async def test_never_deletes_inventory_object(self, cluster, apply_config):
        await self._apply(cluster, apply_config, configmap("cm1"), inventory_object())
        # Simulate an inventory that recorded itself
        live = cluster.objects[INV]
        live["metadata"]["annotations"][INVENTORY_ANNOTATION] = (
            '{"current":{"~G_v1_ConfigMap|default|inventory":null}}'
        )
        pruner = Pruner(cluster, apply_config)

        await pruner.prune(declared(inventory_object()))

        assert "inventory" in cluster.names()

    async def test_no_inventory_in_set_is_noop(self, cluster, apply_config):
        await self._apply(cluster, apply_config, configmap("cm1"), inventory_object())
        cluster.calls.clear()
        pruner = Pruner(cluster, apply_config)

        result = await pruner.prune(declared(configmap("cm2")))

        assert result.pruned == []
        assert cluster.calls == []

    async def test_missing_live_inventory_is_noop(self, cluster, apply_config):
        pruner = Pruner(cluster, apply_config)

        result = await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert result.pruned == []
        assert result.inventory is None
        assert [op for op, _ in cluster.calls] == ["get"]

    async def test_nothing_stale(self, cluster, apply_config):
        await self._apply(cluster, apply_config, configmap("cm1"), inventory_object())
        pruner = Pruner(cluster, apply_config)

        result = await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert result.pruned == []
        assert cluster.names() == ["cm1", "inventory"]

    async def test_recorded_without_namespace_not_pruned(self, cluster, apply_config):
        bare = configmap("cm1")
        del bare["metadata"]["namespace"]
        await self._apply(cluster, apply_config, bare, inventory_object())
        recorded = read_record(cluster.objects[INV]).current
        assert ResourceReference("", "v1", "ConfigMap", "", "cm1") in recorded
        pruner = Pruner(cluster, apply_config, defaulter=NamespaceDefaulter(cluster))

        result = await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert result.pruned == []
        assert cluster.names() == ["cm1", "inventory"]
        assert read_record(cluster.objects[INV]).current == frozenset({CM1})

    async def test_cluster_scoped_recorded_with_namespace_not_pruned(
        self, cluster, apply_config
    ):
        team = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": "team-a", "namespace": "default"},
        }
        await self._apply(cluster, apply_config, team, inventory_object())
        del team["metadata"]["namespace"]
        pruner = Pruner(cluster, apply_config, defaulter=NamespaceDefaulter(cluster))

        result = await pruner.prune(declared(team, inventory_object()))

        assert result.pruned == []
        assert "team-a" in cluster.names()
        assert read_record(cluster.objects[INV]).current == frozenset(
            {ResourceReference("", "v1", "Namespace", "", "team-a")}
        )

    async def test_already_absent_is_not_an_error(self, cluster, apply_config):
        await self._apply(
            cluster, apply_config, configmap("cm1"), configmap("cm2"), inventory_object()
        )
        del cluster.objects[CM2]
        pruner = Pruner(cluster, apply_config)

        result = await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert result.already_absent == [CM2]
        assert result.pruned == []

    async def test_instances_pruned_before_crd(self, cluster, apply_config):
        await self._apply(
            cluster, apply_config, crd(), custom_resource("w1"), inventory_object()
        )
        pruner = Pruner(cluster, apply_config)

        await pruner.prune(declared(inventory_object()))

        deletes = [ref.name for op, ref in cluster.calls if op == "delete"]
        assert deletes == ["w1", "widgets.example.com"]

    async def test_hash_updated(self, cluster, apply_config):
        await self._apply(
            cluster, apply_config, configmap("cm1"), inventory_object(hash_value="a")
        )
        pruner = Pruner(cluster, apply_config)

        await pruner.prune(declared(inventory_object(hash_value="b")))

        annotations = cluster.objects[INV]["metadata"]["annotations"]
        assert annotations[INVENTORY_HASH_ANNOTATION] == "b"

    async def test_partial_failure_keeps_failed_references(
        self, cluster, apply_config
    ):
        await self._apply(
            cluster,
            apply_config,
            configmap("cm1"),
            configmap("cm2"),
            configmap("cm3"),
            inventory_object(),
        )
        cluster.fail_delete[CM2] = ClusterError("forbidden", status=403)
        pruner = Pruner(cluster, apply_config)

        with pytest.raises(OperationError) as exc_info:
            await pruner.prune(declared(configmap("cm1"), inventory_object()))

        assert exc_info.value.references == [CM2]
        assert "cm3" not in cluster.names()
        # The failed reference stays recorded so a later prune retries it
        assert read_record(cluster.objects[INV]).current == frozenset({CM1, CM2})

    async def test_prune_retry_after_failure(self, cluster, apply_config):
        await self._apply(
            cluster, apply_config, configmap("cm1"), configmap("cm2"), inventory_object()
        )
        cluster.fail_delete[CM2] = ClusterError("forbidden", status=403)
        pruner = Pruner(cluster, apply_config)
        with pytest.raises(OperationError):
            await pruner.prune(declared(inventory_object()))

        del cluster.fail_delete[CM2]
        result = await pruner.prune(declared(inventory_object()))

        assert result.pruned == [CM2]
        assert read_record(cluster.objects[INV]).current == frozenset()

    async def test_inventory_conflict(self, cluster, apply_config):
        await self._apply(cluster, apply_config, configmap("cm1"), inventory_object())
        cluster.fail_update[INV] = ConflictError("stale", reference=INV)
        pruner = Pruner(cluster, apply_config)

        with pytest.raises(ConflictError):
            await pruner.prune(declared(inventory_object()))

    async def test_malformed_live_inventory(self, cluster, apply_config):
        await self._apply(cluster, apply_config, inventory_object())
        cluster.objects[INV]["metadata"]["annotations"][INVENTORY_ANNOTATION] = "{"
        pruner = Pruner(cluster, apply_config)

        with pytest.raises(DecodeError):
            await pruner.prune(declared(inventory_object()))

    async def test_multiple_inventory_objects_rejected(self, cluster, apply_config):
        pruner = Pruner(cluster, apply_config)

        with pytest.raises(ConfigError):
            await pruner.prune(declared(inventory_object("a"), inventory_object("b")))

    async def test_write_strips_server_fields(self, apply_config):
        store = AsyncMock()
        store.get.return_value = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": "inventory",
                "namespace": "default",
                "resourceVersion": "9",
                "managedFields": [{"manager": "kubectl"}],
                "annotations": {INVENTORY_ANNOTATION: '{"current":{}}'},
            },
            "status": {},
        }
        pruner = Pruner(store, apply_config)

        await pruner.prune(declared(configmap("cm1"), inventory_object()))

        sent = store.update.call_args.args[0]
        assert sent["metadata"]["resourceVersion"] == "9"
        assert "managedFields" not in sent["metadata"]
        assert "status" not in sent
        assert read_record(sent).current == frozenset({CM1})
