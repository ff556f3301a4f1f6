"""Shared test configuration for database-mcp tests.

Provides:
- FakeBackend: in-memory driver that records connect/disconnect/query events
- FakeCluster: controls which connections are reachable and builds the
  backend table injected into ConnectionManager
- Config helpers and manager fixtures
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest

from database_mcp.engine import ConnectionManager
from database_mcp.engine.exceptions import (
    ConnectionFailedError,
    DisconnectError,
    QueryExecutionError,
)
from database_mcp.engine.sql import (
    BackendSpec,
    ColumnInfo,
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseKind,
    FieldInfo,
    QueryResult,
    TableSchema,
)


class FakeBackend(DatabaseBackendBase):
    """Driver double whose behavior is controlled by a FakeCluster."""

    def __init__(self, config: ConnectionConfig, cluster: FakeCluster) -> None:
        super().__init__(config)
        self.kind = config.kind
        self.cluster = cluster

    async def connect(self) -> None:
        name = self.config.name
        self.cluster.events.append(("connect", name, id(self)))
        gate = self.cluster.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.cluster.unreachable:
            raise ConnectionFailedError(name, "connection refused")
        self._connected = True

    async def disconnect(self) -> None:
        name = self.config.name
        self.cluster.events.append(("disconnect", name, id(self)))
        self._connected = False
        if name in self.cluster.failing_disconnect:
            raise DisconnectError(name, "socket already closed")

    async def _run(self, sql: str, params: tuple[Any, ...]) -> QueryResult:
        self.cluster.queries.append((self.config.name, sql, params))
        if self.config.name in self.cluster.failing_queries:
            raise RuntimeError("relation does not exist")
        return QueryResult(
            rows=[{"value": 1}],
            row_count=1,
            fields=[FieldInfo(name="value", type="int4")],
        )

    async def list_tables(self) -> list[str]:
        self._ensure_connected()
        return ["orders", "users"]

    async def list_catalog(self) -> list[dict[str, Any]]:
        if self.config.name in self.cluster.catalog_failures:
            raise QueryExecutionError("permission denied for pg_database")
        return [{"name": self.config.database or "main", "owner": "owner"}]

    async def describe_table(self, table_name: str) -> TableSchema:
        if table_name != "users":
            return TableSchema(name=table_name)
        return TableSchema(
            name="users",
            columns=[
                ColumnInfo(name="id", type="integer", nullable=False, auto_increment=True),
                ColumnInfo(name="email", type="text", nullable=False),
            ],
            primary_keys=["id"],
        )

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        self._in_transaction = True

    async def commit(self) -> None:
        self._in_transaction = False

    async def rollback(self) -> None:
        self._in_transaction = False


class FakeCluster:
    """Shared state for FakeBackend instances.

    Attributes:
        events: (event, name, instance id) tuples in call order
        queries: (name, sql, params) tuples for every executed statement
        unreachable: Names whose connect() fails
        failing_disconnect: Names whose disconnect() raises
        catalog_failures: Names whose list_catalog() raises
        failing_queries: Names whose statements raise
        gates: Events a connect() waits on before completing, by name
    """

    def __init__(self) -> None:
        self.events: list[tuple[str, str, int]] = []
        self.queries: list[tuple[str, str, tuple[Any, ...]]] = []
        self.unreachable: set[str] = set()
        self.failing_disconnect: set[str] = set()
        self.catalog_failures: set[str] = set()
        self.failing_queries: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.instances: list[FakeBackend] = []

    def build(self, config: ConnectionConfig) -> FakeBackend:
        backend = FakeBackend(config, self)
        self.instances.append(backend)
        return backend

    def backends(self, catalog: bool = True) -> dict[DatabaseKind, BackendSpec]:
        return {kind: BackendSpec(kind, self.build, catalog=catalog) for kind in DatabaseKind}

    def live(self, name: str) -> list[FakeBackend]:
        return [b for b in self.instances if b.config.name == name and b.is_connected()]

    def count(self, event: str, name: str) -> int:
        return sum(1 for e, n, _ in self.events if e == event and n == name)


def pg_config(name: str, database: str | None = "app", **kwargs: Any) -> ConnectionConfig:
    return ConnectionConfig(
        name=name,
        kind=DatabaseKind.POSTGRESQL,
        host="db.internal",
        database=database,
        username="reader",
        password="s3cret",
        **kwargs,
    )


def mysql_config(name: str, database: str | None = "shop") -> ConnectionConfig:
    return ConnectionConfig(
        name=name,
        kind=DatabaseKind.MYSQL,
        host="mysql.internal",
        database=database,
        username="shop",
        password="hunter2",
    )


def sqlite_config(name: str, path: str = "/tmp/database-mcp-test.db") -> ConnectionConfig:
    return ConnectionConfig(name=name, kind=DatabaseKind.SQLITE, path=path)


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
async def manager(cluster: FakeCluster) -> AsyncIterator[ConnectionManager]:
    """ConnectionManager wired to fake backends, torn down after the test."""
    manager = ConnectionManager(backends=cluster.backends())
    yield manager
    cluster.failing_disconnect.clear()
    await manager.disconnect_all()
