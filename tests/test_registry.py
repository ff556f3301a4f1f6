"""Tests for ConnectionRegistry status transitions and handle ownership."""

from __future__ import annotations

import pytest
from conftest import FakeCluster, pg_config

from database_mcp.engine.exceptions import DisconnectError
from database_mcp.engine.registry import ConnectionRegistry
from database_mcp.engine.sql import DatabaseKind, LiveHandle


async def make_handle(cluster: FakeCluster, name: str) -> LiveHandle:
    driver = cluster.build(pg_config(name))
    await driver.connect()
    return LiveHandle(kind=DatabaseKind.POSTGRESQL, driver=driver, catalog=driver.list_catalog)


class TestStatusTransitions:
    """Attempt start, success and failure records."""

    async def test_attempt_start_creates_unconnected_entry(self) -> None:
        registry = ConnectionRegistry()
        prior = await registry.upsert_attempt_start("main", pg_config("main"))

        assert prior is None
        status = registry.get_status("main")
        assert status is not None
        assert status.connected is False
        assert status.error is None
        assert status.last_attempt is not None
        assert status.state == "attempting"

    async def test_success_installs_handle(self, cluster: FakeCluster) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        handle = await make_handle(cluster, "main")

        status = await registry.record_success("main", handle)

        assert status.connected is True
        assert status.error is None
        assert registry.get_handle("main") is handle

    async def test_failure_records_error(self) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))

        status = await registry.record_failure("main", RuntimeError("timeout expired"))

        assert status.connected is False
        assert status.error == "timeout expired"
        assert status.state == "failed"
        assert registry.get_handle("main") is None

    async def test_failure_drops_stray_handle(self, cluster: FakeCluster) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        handle = await make_handle(cluster, "main")
        await registry.record_success("main", handle)

        await registry.record_failure("main", "lost connection")

        assert registry.get_handle("main") is None
        assert cluster.count("disconnect", "main") == 1

    async def test_attempt_start_detaches_live_handle(self, cluster: FakeCluster) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        handle = await make_handle(cluster, "main")
        await registry.record_success("main", handle)

        prior = await registry.upsert_attempt_start("main", pg_config("main"))

        assert prior is handle
        assert registry.get_handle("main") is None
        assert registry.get_status("main").connected is False  # type: ignore[union-attr]


class TestRemoval:
    """remove() semantics."""

    async def test_remove_twice_is_safe(self, cluster: FakeCluster) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        await registry.record_success("main", await make_handle(cluster, "main"))

        assert await registry.remove("main") is True
        assert await registry.remove("main") is False
        assert "main" not in registry
        assert cluster.count("disconnect", "main") == 1

    async def test_remove_raises_disconnect_error_after_deleting(
        self, cluster: FakeCluster
    ) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        await registry.record_success("main", await make_handle(cluster, "main"))
        cluster.failing_disconnect.add("main")

        with pytest.raises(DisconnectError):
            await registry.remove("main")

        assert registry.get_status("main") is None
        assert registry.get_handle("main") is None


class TestSnapshots:
    """Snapshot immutability and bulk detach."""

    async def test_snapshot_is_unaffected_by_later_transitions(self) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        before = await registry.snapshot()

        await registry.record_failure("main", "refused")

        assert isinstance(before, tuple)
        assert before[0].error is None
        assert registry.get_status("main").error == "refused"  # type: ignore[union-attr]

    async def test_detach_all_marks_entries_disconnected(self, cluster: FakeCluster) -> None:
        registry = ConnectionRegistry()
        for name in ("a", "b"):
            await registry.upsert_attempt_start(name, pg_config(name))
            await registry.record_success(name, await make_handle(cluster, name))

        handles = await registry.detach_all()

        assert set(handles) == {"a", "b"}
        assert all(not s.connected for s in await registry.snapshot())
        assert registry.get_handle("a") is None

    async def test_status_to_dict(self) -> None:
        registry = ConnectionRegistry()
        await registry.upsert_attempt_start("main", pg_config("main"))
        status = await registry.record_failure("main", "refused")

        data = status.to_dict()

        assert data["name"] == "main"
        assert data["type"] == "postgresql"
        assert data["connected"] is False
        assert data["error"] == "refused"
        assert isinstance(data["last_attempt"], str)
