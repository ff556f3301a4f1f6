"""PostgreSQL database backend implementation.

This module provides the PostgreSQL backend, using asyncpg for native async
operation with connection pooling.

Features:
    - Native async driver (asyncpg)
    - Connection pooling sized by max_connections
    - SSL/TLS support
    - Catalog listing through pg_catalog
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..exceptions import ConnectionFailedError, DisconnectError
from .backend import (
    ColumnInfo,
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseKind,
    FieldInfo,
    ForeignKeyInfo,
    IndexInfo,
    QueryResult,
    TableSchema,
    parse_affected_rows,
)

if TYPE_CHECKING:
    import asyncpg

logger = logging.getLogger(__name__)

LIST_DATABASES_SQL = """
SELECT
    d.datname AS name,
    pg_catalog.pg_get_userbyid(d.datdba) AS owner,
    pg_catalog.pg_encoding_to_char(d.encoding) AS encoding,
    pg_size_pretty(pg_database_size(d.datname)) AS size
FROM pg_catalog.pg_database d
WHERE d.datistemplate = false
ORDER BY d.datname
"""

LIST_TABLES_SQL = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT column_name, data_type, is_nullable, column_default, character_maximum_length
FROM information_schema.columns
WHERE table_schema = 'public' AND table_name = $1
ORDER BY ordinal_position
"""

PRIMARY_KEYS_SQL = """
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
    AND tc.table_schema = kcu.table_schema
WHERE tc.constraint_type = 'PRIMARY KEY'
    AND tc.table_schema = 'public'
    AND tc.table_name = $1
ORDER BY kcu.ordinal_position
"""

FOREIGN_KEYS_SQL = """
SELECT
    kcu.column_name AS column_name,
    ccu.table_name AS referenced_table,
    ccu.column_name AS referenced_column,
    rc.delete_rule AS on_delete,
    rc.update_rule AS on_update
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
    ON tc.constraint_name = kcu.constraint_name
    AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
    ON ccu.constraint_name = tc.constraint_name
    AND ccu.table_schema = tc.table_schema
LEFT JOIN information_schema.referential_constraints rc
    ON rc.constraint_name = tc.constraint_name
    AND rc.constraint_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
    AND tc.table_schema = 'public'
    AND tc.table_name = $1
"""

INDEXES_SQL = """
SELECT
    i.relname AS index_name,
    array_agg(a.attname ORDER BY c.ordinality) AS columns,
    ix.indisunique AS is_unique
FROM pg_class t
JOIN pg_index ix ON t.oid = ix.indrelid
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN unnest(ix.indkey) WITH ORDINALITY AS c(attnum, ordinality) ON true
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = c.attnum
WHERE t.relname = $1
    AND t.relkind = 'r'
    AND NOT ix.indisprimary
GROUP BY i.relname, ix.indisunique
ORDER BY i.relname
"""


def _import_asyncpg() -> Any:
    """Import asyncpg with helpful error message if not installed."""
    try:
        import asyncpg

        return asyncpg
    except ImportError as e:
        raise ImportError(
            "PostgreSQL backend requires 'asyncpg' package. Install with: pip install asyncpg"
        ) from e


class PostgresBackend(DatabaseBackendBase):
    """PostgreSQL backend using asyncpg with connection pooling.

    Example:
        backend = PostgresBackend(ConnectionConfig(
            name="main",
            kind=DatabaseKind.POSTGRESQL,
            host="localhost",
            database="mydb",
            username="user",
            password="pass",
        ))
        await backend.connect()
        result = await backend.execute_query("SELECT * FROM users WHERE id = $1", (42,))
        await backend.disconnect()
    """

    kind = DatabaseKind.POSTGRESQL

    def __init__(self, config: ConnectionConfig) -> None:
        super().__init__(config)
        self._pool: asyncpg.Pool | None = None
        self._conn: asyncpg.Connection | None = None

    async def connect(self) -> None:
        """Create the connection pool and verify it with SELECT 1.

        Pool settings:
            - min_size: 1
            - max_size: config.max_connections
            - command_timeout: config.timeout
            - timeout: config.connect_timeout

        Raises:
            ConnectionFailedError: If the pool cannot be created
            ImportError: If asyncpg is not installed
        """
        asyncpg = _import_asyncpg()
        config = self.config

        ssl_context: Any = None
        if config.ssl is True:
            ssl_context = True
        elif isinstance(config.ssl, str) and config.ssl:
            # asyncpg accepts libpq sslmode strings directly
            ssl_context = config.ssl

        try:
            self._pool = await asyncpg.create_pool(
                host=config.host,
                port=config.port,
                database=config.database,
                user=config.username,
                password=config.password,
                ssl=ssl_context,
                min_size=1,
                max_size=config.max_connections,
                max_inactive_connection_lifetime=300,
                command_timeout=config.timeout,
                timeout=config.connect_timeout,
            )
            await self._pool.fetchval("SELECT 1")
        except Exception as e:
            if self._pool is not None:
                self._pool.terminate()
                self._pool = None
            raise ConnectionFailedError(config.name, str(e)) from e

        self._connected = True
        logger.info(
            f"PostgreSQL connection established: {config.name} "
            f"({config.host}:{config.port}/{config.database})"
        )

    async def disconnect(self) -> None:
        """Close connection pool gracefully.

        Safe to call multiple times or if not connected.
        """
        pool, conn = self._pool, self._conn
        self._pool = None
        self._conn = None
        self._connected = False
        self._in_transaction = False
        if pool is None:
            return

        try:
            if conn is not None:
                await pool.release(conn)
            await pool.close()
        except Exception as e:
            raise DisconnectError(self.config.name, str(e)) from e
        logger.debug(f"Disconnected from PostgreSQL: {self.config.name}")

    async def _run(self, sql: str, params: tuple[Any, ...]) -> QueryResult:
        assert self._pool is not None
        if self._conn is not None:
            return await self._run_on(self._conn, sql, params)
        async with self._pool.acquire() as conn:
            return await self._run_on(conn, sql, params)

    async def _run_on(
        self, conn: asyncpg.Connection, sql: str, params: tuple[Any, ...]
    ) -> QueryResult:
        statement = await conn.prepare(sql)
        attributes = statement.get_attributes()

        if not attributes:
            status = await conn.execute(sql, *params)
            return QueryResult(row_count=parse_affected_rows(status))

        records = await statement.fetch(*params)
        rows = [dict(record) for record in records]
        fields = [FieldInfo(name=attr.name, type=attr.type.name) for attr in attributes]
        return QueryResult(rows=rows, row_count=len(rows), fields=fields)

    async def list_tables(self) -> list[str]:
        result = await self.execute_query(LIST_TABLES_SQL)
        return [row["table_name"] for row in result.rows]

    async def list_catalog(self) -> list[dict[str, Any]]:
        """List non-template databases on the server with owner, encoding and size."""
        result = await self.execute_query(LIST_DATABASES_SQL)
        return [
            {
                "name": row["name"],
                "owner": row["owner"],
                "encoding": row["encoding"],
                "size": row["size"],
            }
            for row in result.rows
        ]

    async def describe_table(self, table_name: str) -> TableSchema:
        params = (table_name,)
        columns_result = await self.execute_query(COLUMNS_SQL, params)
        columns = [
            ColumnInfo(
                name=row["column_name"],
                type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                auto_increment="nextval" in (row["column_default"] or ""),
                max_length=row["character_maximum_length"],
            )
            for row in columns_result.rows
        ]

        pk_result = await self.execute_query(PRIMARY_KEYS_SQL, params)
        fk_result = await self.execute_query(FOREIGN_KEYS_SQL, params)
        index_result = await self.execute_query(INDEXES_SQL, params)

        return TableSchema(
            name=table_name,
            columns=columns,
            primary_keys=[row["column_name"] for row in pk_result.rows],
            foreign_keys=[
                ForeignKeyInfo(
                    column_name=row["column_name"],
                    referenced_table=row["referenced_table"],
                    referenced_column=row["referenced_column"],
                    on_delete=row["on_delete"],
                    on_update=row["on_update"],
                )
                for row in fk_result.rows
            ],
            indexes=[
                IndexInfo(
                    name=row["index_name"],
                    columns=list(row["columns"]),
                    unique=row["is_unique"],
                    type="unique" if row["is_unique"] else "btree",
                )
                for row in index_result.rows
            ],
        )

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        """Begin a transaction with optional isolation level.

        Maps isolation levels:
            - read_uncommitted → READ UNCOMMITTED
            - read_committed → READ COMMITTED (default)
            - repeatable_read → REPEATABLE READ
            - serializable → SERIALIZABLE
        """
        self._ensure_connected()
        assert self._pool is not None

        self._conn = await self._pool.acquire()

        mapping = {
            "read_uncommitted": "READ UNCOMMITTED",
            "read_committed": "READ COMMITTED",
            "repeatable_read": "REPEATABLE READ",
            "serializable": "SERIALIZABLE",
        }
        pg_isolation = mapping.get(isolation_level.lower()) if isolation_level else None

        if pg_isolation:
            await self._conn.execute(f"BEGIN TRANSACTION ISOLATION LEVEL {pg_isolation}")
        else:
            await self._conn.execute("BEGIN")

        self._in_transaction = True
        logger.debug(f"Started PostgreSQL transaction (isolation={isolation_level})")

    async def commit(self) -> None:
        if self._conn is None:
            return

        try:
            await self._conn.execute("COMMIT")
        finally:
            await self._release_transaction_conn()

    async def rollback(self) -> None:
        """Rollback the current transaction.

        Safe to call even if no transaction is active.
        """
        if self._conn is None:
            return

        try:
            await self._conn.execute("ROLLBACK")
        except Exception as e:
            logger.warning(f"Rollback failed on '{self.config.name}': {e}")
        finally:
            await self._release_transaction_conn()

    async def _release_transaction_conn(self) -> None:
        conn = self._conn
        self._conn = None
        self._in_transaction = False
        if conn is not None and self._pool is not None:
            await self._pool.release(conn)
