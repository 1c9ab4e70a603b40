"""Unit tests for status.py - presence report of declared resources."""

from unittest.mock import AsyncMock

import pytest

from conftest import configmap, declared
from errors import ClusterError, NotFoundError
from resources import ResourceReference
from status import (
    CURRENT,
    NOT_FOUND,
    UNKNOWN,
    ResourceStatus,
    collect_status,
    format_status,
)

CM1 = ResourceReference("", "v1", "ConfigMap", "default", "cm1")
NS = ResourceReference("", "v1", "Namespace", "", "team-a")


@pytest.mark.asyncio
class TestCollectStatus:
    """Tests for collect_status."""

    async def test_current_and_not_found(self, cluster):
        await cluster.create(configmap("cm1"))

        statuses = await collect_status(
            cluster, declared(configmap("cm1"), configmap("cm2"))
        )

        assert [(s.reference.name, s.status) for s in statuses] == [
            ("cm1", CURRENT),
            ("cm2", NOT_FOUND),
        ]

    async def test_errors_are_unknown(self):
        store = AsyncMock()
        store.get.side_effect = ClusterError("forbidden", status=403)

        statuses = await collect_status(store, declared(configmap("cm1")))

        assert statuses[0].status == UNKNOWN
        assert statuses[0].message == "forbidden"

    async def test_not_found_error_subclass(self):
        store = AsyncMock()
        store.get.side_effect = NotFoundError("gone")

        statuses = await collect_status(store, declared(configmap("cm1")))

        assert statuses[0].status == NOT_FOUND


class TestFormatStatus:
    """Tests for format_status."""

    def test_empty(self):
        assert format_status([]) == "Resources: 0"

    def test_table(self):
        output = format_status(
            [ResourceStatus(CM1, CURRENT), ResourceStatus(NS, NOT_FOUND)]
        )
        lines = output.splitlines()

        assert lines[0] == "Resources: 2"
        assert "Kind" in lines[1] and "Status" in lines[1]
        assert "ConfigMap" in output and "cm1" in output
        # Cluster scoped objects show no namespace
        ns_line = next(line for line in lines if "team-a" in line)
        assert " - " in ns_line
        assert NOT_FOUND in ns_line
