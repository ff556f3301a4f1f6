"""Database backend protocol and data classes for the connection engine.

This module defines the interface every database backend implements (the
driver capability consumed by the connection manager), along with the shared
configuration and result structures.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..exceptions import QueryExecutionError

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("database_mcp.audit")

AUDIT_SQL_PREVIEW = 100


class DatabaseKind(Enum):
    """Supported database backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


DEFAULT_PORTS: dict[DatabaseKind, int] = {
    DatabaseKind.POSTGRESQL: 5432,
    DatabaseKind.MYSQL: 3306,
}


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable description of one backend target.

    Identity is ``name``. Replacing a connection means building a new value
    under the same name, never mutating an existing one.

    Attributes:
        name: Unique logical connection name
        kind: Backend kind (sqlite, postgresql, mysql)
        path: SQLite database file path (or ":memory:")
        host: Database server host (PostgreSQL/MySQL)
        port: Database server port (defaults per kind)
        database: Database name
        username: Database username
        password: Database password (never rendered by repr)
        ssl: SSL/TLS configuration (bool or sslmode string)
        max_connections: Connection pool size (remote DBs only)
        timeout: Query execution timeout in seconds
        connect_timeout: Connection establishment timeout in seconds
        options: Backend-specific options (e.g., sqlite_pragmas)
    """

    name: str
    kind: DatabaseKind
    path: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    ssl: bool | str = False
    max_connections: int = 10
    timeout: int = 30
    connect_timeout: int = 10
    options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.kind, DatabaseKind):
            object.__setattr__(self, "kind", DatabaseKind(self.kind))
        if self.port is None and self.kind in DEFAULT_PORTS:
            object.__setattr__(self, "port", DEFAULT_PORTS[self.kind])

    @property
    def is_network(self) -> bool:
        return self.kind is not DatabaseKind.SQLITE

    def descriptor(self) -> dict[str, Any]:
        """Connection descriptor used in tool responses (no credentials)."""
        data: dict[str, Any] = {"name": self.name, "type": self.kind.value}
        if self.is_network:
            data["host"] = self.host
            data["port"] = self.port
            data["database"] = self.database
        else:
            data["path"] = self.path
        return data


@dataclass
class FieldInfo:
    """Column metadata for a result set."""

    name: str
    type: str
    nullable: bool = True


@dataclass
class QueryResult:
    """Unified query result across backends.

    Attributes:
        rows: Result rows as list of dicts (empty for statements without a result set)
        row_count: Rows returned, or rows affected for INSERT/UPDATE/DELETE
        fields: Column metadata of the result set
        execution_time_ms: Wall time spent in the driver
        last_insert_id: Last inserted row ID where the backend reports one
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    fields: list[FieldInfo] = field(default_factory=list)
    execution_time_ms: float = 0.0
    last_insert_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "row_count": self.row_count,
            "fields": [asdict(f) for f in self.fields],
        }


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    default_value: Any = None
    auto_increment: bool = False
    max_length: int | None = None


@dataclass
class ForeignKeyInfo:
    column_name: str
    referenced_table: str
    referenced_column: str
    on_delete: str | None = None
    on_update: str | None = None


@dataclass
class IndexInfo:
    name: str
    columns: list[str]
    unique: bool
    type: str


@dataclass
class TableSchema:
    """Structure of a single table."""

    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    primary_keys: list[str] = field(default_factory=list)
    foreign_keys: list[ForeignKeyInfo] = field(default_factory=list)
    indexes: list[IndexInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# Type alias for query parameters
Params = tuple[Any, ...] | list[Any] | None


@runtime_checkable
class DatabaseBackend(Protocol):
    """Protocol defining the driver capability consumed by the connection manager.

    Backends are constructed for one ConnectionConfig and hold their own
    connection or pool. ``list_catalog`` is optional; whether a backend offers
    it is declared in the backend table (see factory.py), not inspected at runtime.
    """

    kind: DatabaseKind
    config: ConnectionConfig

    async def connect(self) -> None:
        """Establish the connection (or pool) and verify it with a round trip.

        Raises:
            ConnectionFailedError: If the backend cannot be reached
        """
        ...

    async def disconnect(self) -> None:
        """Close the connection or pool. Safe to call multiple times."""
        ...

    def is_connected(self) -> bool:
        ...

    async def execute_query(self, sql: str, params: Params = None) -> QueryResult:
        """Execute any statement and return rows or the affected row count.

        Raises:
            QueryExecutionError: If execution fails
        """
        ...

    async def list_tables(self) -> list[str]:
        ...

    async def describe_table(self, table_name: str) -> TableSchema:
        ...

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class DatabaseBackendBase(ABC):
    """Abstract base class for database backends.

    Provides timing, audit logging and error wrapping around ``_run``.
    Subclasses implement the engine-specific parts.
    """

    kind: DatabaseKind

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self._connected: bool = False
        self._in_transaction: bool = False

    @abstractmethod
    async def connect(self) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def _run(self, sql: str, params: tuple[Any, ...]) -> QueryResult:
        """Execute one statement on the engine."""
        pass

    @abstractmethod
    async def list_tables(self) -> list[str]:
        pass

    @abstractmethod
    async def describe_table(self, table_name: str) -> TableSchema:
        pass

    @abstractmethod
    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        """Begin transaction."""
        pass

    @abstractmethod
    async def commit(self) -> None:
        """Commit transaction."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback transaction."""
        pass

    def is_connected(self) -> bool:
        return self._connected

    @property
    def in_transaction(self) -> bool:
        """Check if in transaction."""
        return self._in_transaction

    async def execute_query(self, sql: str, params: Params = None) -> QueryResult:
        """Execute a statement with timing and audit logging.

        Args:
            sql: SQL statement in the backend's placeholder style
            params: Positional parameters

        Returns:
            QueryResult with execution_time_ms filled in

        Raises:
            QueryExecutionError: If not connected or the statement fails
        """
        self._ensure_connected()
        normalized = tuple(params) if params else ()
        preview = sql[:AUDIT_SQL_PREVIEW] + ("..." if len(sql) > AUDIT_SQL_PREVIEW else "")

        started = time.perf_counter()
        try:
            result = await self._run(sql, normalized)
        except QueryExecutionError:
            raise
        except Exception as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error(
                f"Query failed on '{self.config.name}' after {elapsed:.1f}ms: {e} "
                f"(sql: {preview})"
            )
            raise QueryExecutionError(
                f"Query execution failed on database '{self.config.name}': {e}"
            ) from e

        result.execution_time_ms = round((time.perf_counter() - started) * 1000, 3)
        audit_logger.info(
            f"database={self.config.name} rows={result.row_count} "
            f"time_ms={result.execution_time_ms} params={len(normalized)} sql={preview}"
        )
        return result

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise QueryExecutionError(
                f"Database '{self.config.name}' is not connected. Call connect() first."
            )


def parse_affected_rows(status: str) -> int:
    """Parse affected row count from a PostgreSQL command status string.

    Examples:
        - "INSERT 0 1" -> 1
        - "UPDATE 5" -> 5
        - "CREATE TABLE" -> 0
    """
    if not status:
        return 0
    parts = status.split()
    if len(parts) >= 2:
        try:
            return int(parts[-1])
        except ValueError:
            pass
    return 0
