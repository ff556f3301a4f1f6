"""Tests for ConnectionManager lifecycle operations."""

from __future__ import annotations

import asyncio

import pytest
from conftest import FakeCluster, pg_config, sqlite_config

from database_mcp.engine import ConnectionManager, decisions
from database_mcp.engine.exceptions import (
    ConnectionFailedError,
    DisconnectError,
    UnknownConnectionError,
)
from database_mcp.engine.sql import ConnectionConfig, DatabaseKind


async def settle() -> None:
    """Let queued tasks run up to their next blocking await."""
    for _ in range(10):
        await asyncio.sleep(0)


# ============================================================================
# Bulk initialization
# ============================================================================


class TestInitialize:
    """initialize() fan-out and reporting."""

    async def test_every_name_gets_one_status(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.add("down")
        configs = [pg_config("main"), pg_config("down"), sqlite_config("local")]

        report = await manager.initialize(configs)

        assert report.attempted == 3
        assert report.succeeded == 2
        assert report.failed == 1
        assert "connection refused" in report.failures["down"]

        statuses = await manager.snapshot()
        assert sorted(s.name for s in statuses) == ["down", "local", "main"]
        for status in statuses:
            assert status.connected == (manager.get_handle(status.name) is not None)

    async def test_zero_successes_does_not_raise(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.update({"a", "b"})

        report = await manager.initialize([pg_config("a"), pg_config("b")])

        assert report.succeeded == 0
        assert report.failed == 2
        assert manager.configured_names() == ["a", "b"]

    async def test_invalid_config_is_captured(self, manager: ConnectionManager) -> None:
        bad = ConnectionConfig(name="nohost", kind=DatabaseKind.POSTGRESQL, database="x", username="u")

        report = await manager.initialize([bad])

        assert report.failed == 1
        assert "Host is required" in report.failures["nohost"]


# ============================================================================
# Add / replace / remove
# ============================================================================


class TestAddConnection:
    """add_connection() replace semantics and failure capture."""

    async def test_replace_disconnects_prior_before_connect(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.add_connection(pg_config("main"))
        first = cluster.instances[0]

        await manager.add_connection(pg_config("main", database="other"))

        assert [e[0] for e in cluster.events] == ["connect", "disconnect", "connect"]
        assert cluster.events[1][2] == id(first)
        assert len(cluster.live("main")) == 1
        assert manager.get_config("main").database == "other"

    async def test_failure_is_returned_not_raised(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.add("main")

        status = await manager.add_connection(pg_config("main"))

        assert status.connected is False
        assert status.error is not None
        assert manager.get_handle("main") is None

    async def test_raise_on_failure_after_recording(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.add("main")

        with pytest.raises(ConnectionFailedError):
            await manager.add_connection(pg_config("main"), raise_on_failure=True)

        status = manager.get_status("main")
        assert status is not None
        assert status.state == "failed"

    async def test_failed_replace_leaves_no_handle(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.add_connection(pg_config("main"))
        cluster.unreachable.add("main")

        status = await manager.add_connection(pg_config("main"))

        assert status.connected is False
        assert manager.get_handle("main") is None
        assert cluster.live("main") == []


class TestRemoveConnection:
    """remove_connection() idempotence and error propagation."""

    async def test_remove_twice(self, manager: ConnectionManager, cluster: FakeCluster) -> None:
        await manager.add_connection(pg_config("main"))

        await manager.remove_connection("main")
        await manager.remove_connection("main")

        assert manager.get_status("main") is None
        assert "main" not in manager.configured_names()
        assert cluster.count("disconnect", "main") == 1

    async def test_remove_absent_name_is_noop(self, manager: ConnectionManager) -> None:
        await manager.remove_connection("never-added")

    async def test_disconnect_failure_propagates(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.add_connection(pg_config("main"))
        cluster.failing_disconnect.add("main")

        with pytest.raises(DisconnectError):
            await manager.remove_connection("main")

        assert manager.get_status("main") is None

    async def test_pending_lazy_connect_does_not_revive_removed_name(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        """A tool call queued behind a remove must not reconnect the name."""
        gate = cluster.gates["a"] = asyncio.Event()
        adding = asyncio.create_task(manager.add_connection(pg_config("a")))
        await settle()
        removing = asyncio.create_task(manager.remove_connection("a"))
        listing = asyncio.create_task(decisions.list_tables(manager, "a"))
        await settle()

        gate.set()
        await asyncio.gather(adding, removing)
        response = await listing

        assert response["is_error"] is True
        assert response["error_type"] == "UnknownConnection"
        assert manager.configured_names() == []
        assert manager.get_status("a") is None
        assert cluster.live("a") == []
        assert cluster.count("connect", "a") == 1

    async def test_bulk_retry_skips_name_removed_while_waiting(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.add("a")
        await manager.initialize([pg_config("a")])
        gate = cluster.gates["a"] = asyncio.Event()
        adding = asyncio.create_task(manager.add_connection(pg_config("a")))
        await settle()
        removing = asyncio.create_task(manager.remove_connection("a"))
        retrying = asyncio.create_task(manager.retry_failed())
        await settle()

        gate.set()
        await asyncio.gather(adding, removing)
        report = await retrying

        assert report.attempted == 0
        assert cluster.count("connect", "a") == 2
        assert manager.get_status("a") is None
        assert manager.configured_names() == []

    async def test_name_locks_released_after_remove(self, manager: ConnectionManager) -> None:
        for i in range(100):
            name = f"conn-{i}"
            await manager.add_connection(pg_config(name))
            await manager.remove_connection(name)

        assert manager._name_locks == {}


# ============================================================================
# Retry
# ============================================================================


class TestRetryFailed:
    """retry_failed() targeting and aggregate behavior."""

    async def test_retry_all_skips_connected(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.update({"b", "c"})
        await manager.initialize([pg_config("a"), pg_config("b"), pg_config("c")])
        cluster.unreachable.discard("b")

        report = await manager.retry_failed()

        assert report.attempted == 2
        assert report.succeeded == 1
        assert report.failed == 1
        assert set(report.failures) == {"c"}
        assert cluster.count("connect", "a") == 1
        assert cluster.count("connect", "b") == 2
        assert {s.name: s.connected for s in report.statuses} == {
            "a": True,
            "b": True,
            "c": False,
        }

    async def test_retry_all_with_nothing_failed(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.initialize([pg_config("a")])

        report = await manager.retry_failed()

        assert report.attempted == 0
        assert cluster.count("connect", "a") == 1

    async def test_retry_target_unknown(self, manager: ConnectionManager) -> None:
        await manager.initialize([pg_config("a"), pg_config("b")])

        with pytest.raises(UnknownConnectionError) as exc_info:
            await manager.retry_failed("missing")

        assert "a, b" in str(exc_info.value)
        assert exc_info.value.available == ["a", "b"]

    async def test_retry_target_already_connected(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.initialize([pg_config("a")])

        report = await manager.retry_failed("a")

        assert report.already_connected is True
        assert report.attempted == 0
        assert cluster.count("connect", "a") == 1

    async def test_retry_target_recovers(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.unreachable.add("a")
        await manager.initialize([pg_config("a")])
        cluster.unreachable.clear()

        report = await manager.retry_failed("a")

        assert report.succeeded == 1
        assert manager.get_status("a").connected is True  # type: ignore[union-attr]

    async def test_retry_registered_but_never_attempted(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        manager.register([pg_config("lazy")])

        report = await manager.retry_failed("lazy")

        assert report.succeeded == 1
        assert cluster.count("connect", "lazy") == 1


# ============================================================================
# Lazy connect, counts and shutdown
# ============================================================================


class TestEnsureConnected:
    """ensure_connected() get-or-connect."""

    async def test_connects_registered_config(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        manager.register([pg_config("lazy")])

        handle = await manager.ensure_connected("lazy")

        assert handle.driver.is_connected()
        assert manager.get_status("lazy").connected is True  # type: ignore[union-attr]

    async def test_concurrent_calls_connect_once(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        manager.register([pg_config("lazy")])

        first, second = await asyncio.gather(
            manager.ensure_connected("lazy"), manager.ensure_connected("lazy")
        )

        assert first is second
        assert cluster.count("connect", "lazy") == 1

    async def test_unreachable_raises(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        manager.register([pg_config("down")])
        cluster.unreachable.add("down")

        with pytest.raises(ConnectionFailedError):
            await manager.ensure_connected("down")

        assert manager.get_status("down").state == "failed"  # type: ignore[union-attr]

    async def test_unknown_raises(self, manager: ConnectionManager) -> None:
        with pytest.raises(UnknownConnectionError):
            await manager.ensure_connected("missing")

    async def test_cancelled_attempt_is_recorded_as_failed(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        cluster.gates["a"] = asyncio.Event()
        manager.register([pg_config("a")])
        task = asyncio.create_task(decisions.list_databases(manager, "a"))
        await settle()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        status = manager.get_status("a")
        assert status is not None
        assert status.state == "failed"
        assert status.error == "Connection attempt cancelled"
        assert manager.get_handle("a") is None
        assert cluster.count("disconnect", "a") == 1

        listing = await decisions.list_connections(manager)
        assert listing["connections"][0]["status"] == "failed"


class TestDisconnectAll:
    """disconnect_all() best-effort teardown."""

    async def test_failure_does_not_block_others(
        self, manager: ConnectionManager, cluster: FakeCluster
    ) -> None:
        await manager.initialize([pg_config("a"), pg_config("b"), pg_config("c")])
        cluster.failing_disconnect.add("b")

        failures = await manager.disconnect_all()

        assert set(failures) == {"b"}
        assert cluster.count("disconnect", "a") == 1
        assert cluster.count("disconnect", "c") == 1
        assert await manager.snapshot() == ()
        assert manager.configured_names() == []
        assert manager._name_locks == {}

    async def test_status_counts(self, manager: ConnectionManager, cluster: FakeCluster) -> None:
        cluster.unreachable.add("b")
        await manager.initialize([pg_config("a"), pg_config("b")])
        manager.register([pg_config("c")])

        counts = await manager.status_counts()

        assert counts == {"configured": 3, "active": 1, "failed": 1, "unattempted": 1}
