"""MySQL/MariaDB database backend implementation.

This module provides the MySQL backend, using aiomysql for native async
operation with connection pooling.

Features:
    - Native async driver (aiomysql)
    - Connection pooling sized by max_connections
    - SSL/TLS support
    - Compatible with MySQL 5.7+ and MariaDB 10.2+

Note:
    Requires the 'aiomysql' package: pip install aiomysql
"""

from __future__ import annotations

import logging
import ssl
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
)

if TYPE_CHECKING:
    import aiomysql

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = ("information_schema", "performance_schema", "mysql", "sys")

LIST_DATABASES_SQL = """
SELECT
    SCHEMA_NAME AS name,
    CASE
        WHEN SCHEMA_NAME IN ('information_schema', 'performance_schema', 'mysql', 'sys')
        THEN 'SYSTEM SCHEMA'
        ELSE 'BASE DATABASE'
    END AS type
FROM information_schema.SCHEMATA
ORDER BY SCHEMA_NAME
"""

LIST_TABLES_SQL = """
SELECT table_name AS table_name
FROM information_schema.tables
WHERE table_schema = DATABASE() AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

COLUMNS_SQL = """
SELECT
    column_name AS column_name,
    data_type AS data_type,
    is_nullable AS is_nullable,
    column_default AS column_default,
    character_maximum_length AS character_maximum_length,
    extra AS extra
FROM information_schema.columns
WHERE table_schema = DATABASE() AND table_name = %s
ORDER BY ordinal_position
"""

PRIMARY_KEYS_SQL = """
SELECT column_name AS column_name
FROM information_schema.key_column_usage
WHERE table_schema = DATABASE()
    AND table_name = %s
    AND constraint_name = 'PRIMARY'
ORDER BY ordinal_position
"""

FOREIGN_KEYS_SQL = """
SELECT
    kcu.column_name AS column_name,
    kcu.referenced_table_name AS referenced_table,
    kcu.referenced_column_name AS referenced_column,
    rc.delete_rule AS on_delete,
    rc.update_rule AS on_update
FROM information_schema.key_column_usage kcu
LEFT JOIN information_schema.referential_constraints rc
    ON rc.constraint_name = kcu.constraint_name
    AND rc.constraint_schema = kcu.table_schema
WHERE kcu.table_schema = DATABASE()
    AND kcu.table_name = %s
    AND kcu.referenced_table_name IS NOT NULL
"""

INDEXES_SQL = """
SELECT
    index_name AS index_name,
    column_name AS column_name,
    non_unique AS non_unique,
    index_type AS index_type
FROM information_schema.statistics
WHERE table_schema = DATABASE()
    AND table_name = %s
    AND index_name != 'PRIMARY'
ORDER BY index_name, seq_in_index
"""


def _import_aiomysql() -> Any:
    """Import aiomysql with helpful error message if not installed."""
    try:
        import aiomysql

        return aiomysql
    except ImportError as e:
        raise ImportError(
            "MySQL backend requires 'aiomysql' package. Install with: pip install aiomysql"
        ) from e


class MySQLBackend(DatabaseBackendBase):
    """MySQL/MariaDB backend using aiomysql with connection pooling.

    Example:
        backend = MySQLBackend(ConnectionConfig(
            name="shop",
            kind=DatabaseKind.MYSQL,
            host="localhost",
            database="shop",
            username="user",
            password="pass",
        ))
        await backend.connect()
        result = await backend.execute_query("SELECT * FROM users WHERE id = %s", (42,))
        await backend.disconnect()
    """

    kind = DatabaseKind.MYSQL

    def __init__(self, config: ConnectionConfig) -> None:
        super().__init__(config)
        self._pool: aiomysql.Pool | None = None
        self._conn: aiomysql.Connection | None = None

    async def connect(self) -> None:
        """Create the connection pool and verify it with SELECT 1.

        Pool settings:
            - minsize: 1
            - maxsize: config.max_connections
            - pool_recycle: 300s (prevent stale connections)
            - connect_timeout: config.connect_timeout

        Raises:
            ConnectionFailedError: If the pool cannot be created
            ImportError: If aiomysql is not installed
        """
        aiomysql = _import_aiomysql()
        config = self.config

        ssl_context = ssl.create_default_context() if config.ssl else None

        try:
            self._pool = await aiomysql.create_pool(
                host=config.host,
                port=config.port,
                db=config.database,
                user=config.username,
                password=config.password or "",
                ssl=ssl_context,
                minsize=1,
                maxsize=config.max_connections,
                pool_recycle=300,
                connect_timeout=config.connect_timeout,
                autocommit=True,  # Explicit transactions override
            )
            async with self._pool.acquire() as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute("SELECT 1")
        except Exception as e:
            if self._pool is not None:
                self._pool.terminate()
                self._pool = None
            raise ConnectionFailedError(config.name, str(e)) from e

        self._connected = True
        logger.info(
            f"MySQL connection established: {config.name} "
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
                pool.release(conn)
            pool.close()
            await pool.wait_closed()
        except Exception as e:
            raise DisconnectError(self.config.name, str(e)) from e
        logger.debug(f"Disconnected from MySQL: {self.config.name}")

    async def _run(self, sql: str, params: tuple[Any, ...]) -> QueryResult:
        assert self._pool is not None
        if self._conn is not None:
            return await self._run_on(self._conn, sql, params)
        async with self._pool.acquire() as conn:
            return await self._run_on(conn, sql, params)

    async def _run_on(
        self, conn: aiomysql.Connection, sql: str, params: tuple[Any, ...]
    ) -> QueryResult:
        aiomysql = _import_aiomysql()
        async with conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, params or None)
            if cursor.description:
                rows = list(await cursor.fetchall())
                fields = [
                    FieldInfo(name=desc[0], type=str(desc[1]), nullable=bool(desc[6]))
                    for desc in cursor.description
                ]
                return QueryResult(rows=rows, row_count=len(rows), fields=fields)
            return QueryResult(
                row_count=max(cursor.rowcount, 0),
                last_insert_id=cursor.lastrowid,
            )

    async def list_tables(self) -> list[str]:
        result = await self.execute_query(LIST_TABLES_SQL)
        return [row["table_name"] for row in result.rows]

    async def list_catalog(self) -> list[dict[str, Any]]:
        """List every schema on the server, system schemas included."""
        result = await self.execute_query(LIST_DATABASES_SQL)
        return [{"name": row["name"], "type": row["type"]} for row in result.rows]

    async def describe_table(self, table_name: str) -> TableSchema:
        params = (table_name,)
        columns_result = await self.execute_query(COLUMNS_SQL, params)
        columns = [
            ColumnInfo(
                name=row["column_name"],
                type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default_value=row["column_default"],
                auto_increment="auto_increment" in (row["extra"] or "").lower(),
                max_length=row["character_maximum_length"],
            )
            for row in columns_result.rows
        ]

        pk_result = await self.execute_query(PRIMARY_KEYS_SQL, params)
        fk_result = await self.execute_query(FOREIGN_KEYS_SQL, params)
        index_result = await self.execute_query(INDEXES_SQL, params)

        # Group index columns by index name, preserving order
        indexes: dict[str, IndexInfo] = {}
        for row in index_result.rows:
            name = row["index_name"]
            if name not in indexes:
                unique = int(row["non_unique"]) == 0
                indexes[name] = IndexInfo(
                    name=name,
                    columns=[],
                    unique=unique,
                    type="unique" if unique else str(row["index_type"]).lower(),
                )
            indexes[name].columns.append(row["column_name"])

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
            indexes=list(indexes.values()),
        )

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        """Begin a transaction with optional isolation level.

        Maps isolation levels:
            - read_uncommitted → READ UNCOMMITTED
            - read_committed → READ COMMITTED
            - repeatable_read → REPEATABLE READ (default)
            - serializable → SERIALIZABLE
        """
        self._ensure_connected()
        assert self._pool is not None

        self._conn = await self._pool.acquire()

        if isolation_level:
            mapping = {
                "read_uncommitted": "READ UNCOMMITTED",
                "read_committed": "READ COMMITTED",
                "repeatable_read": "REPEATABLE READ",
                "serializable": "SERIALIZABLE",
            }
            mysql_isolation = mapping.get(isolation_level.lower())
            if mysql_isolation:
                async with self._conn.cursor() as cursor:
                    await cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {mysql_isolation}")

        await self._conn.begin()
        self._in_transaction = True
        logger.debug(f"Started MySQL transaction (isolation={isolation_level})")

    async def commit(self) -> None:
        if self._conn is None:
            return

        try:
            await self._conn.commit()
        finally:
            self._release_transaction_conn()

    async def rollback(self) -> None:
        """Rollback the current transaction.

        Safe to call even if no transaction is active.
        """
        if self._conn is None:
            return

        try:
            await self._conn.rollback()
        except Exception as e:
            logger.warning(f"Rollback failed on '{self.config.name}': {e}")
        finally:
            self._release_transaction_conn()

    def _release_transaction_conn(self) -> None:
        conn = self._conn
        self._conn = None
        self._in_transaction = False
        if conn is not None and self._pool is not None:
            self._pool.release(conn)
