"""SQLite database backend implementation.

This module provides the SQLite backend, using the stdlib sqlite3 module with
asyncio run_in_executor for async operation.

Features:
    - WAL mode by default for concurrent reads
    - Automatic busy_timeout for lock contention handling
    - Foreign key enforcement enabled
    - PRAGMA configuration via options
    - sqlite-vec extension for vector similarity search
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import sqlite_vec  # type: ignore[import-untyped]

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

logger = logging.getLogger(__name__)

T = TypeVar("T")

SINGLE_FILE_NOTE = (
    "SQLite is a single-file database. Use list_tables to see tables within this database."
)


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SqliteBackend(DatabaseBackendBase):
    """SQLite backend using stdlib sqlite3 with async executor.

    Example:
        backend = SqliteBackend(ConnectionConfig(
            name="local", kind=DatabaseKind.SQLITE, path="/data/app.db"
        ))
        await backend.connect()
        result = await backend.execute_query("SELECT * FROM users WHERE id = ?", (42,))
        await backend.disconnect()
    """

    kind = DatabaseKind.SQLITE

    DEFAULT_PRAGMAS: dict[str, str | int] = {
        "journal_mode": "WAL",
        "busy_timeout": 30000,
        "synchronous": "NORMAL",
        "foreign_keys": "ON",
    }

    def __init__(self, config: ConnectionConfig) -> None:
        super().__init__(config)
        self._conn: sqlite3.Connection | None = None

    async def _in_executor(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    async def connect(self) -> None:
        """Open the database file and apply PRAGMA settings.

        Creates the database file and parent directories if they don't exist.

        Raises:
            ConnectionFailedError: If the file cannot be opened
        """
        config = self.config

        def _connect() -> sqlite3.Connection:
            path = config.path or ":memory:"

            if path != ":memory:" and not path.startswith(":"):
                Path(path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(path, timeout=config.timeout, check_same_thread=False)
            try:
                conn.row_factory = sqlite3.Row

                # Extension must be loaded before any PRAGMA settings
                if config.options.get("load_sqlite_vec", True):
                    try:
                        conn.enable_load_extension(True)
                        sqlite_vec.load(conn)
                        conn.enable_load_extension(False)
                        logger.debug("Loaded sqlite-vec extension")
                    except Exception as e:
                        logger.warning(f"Failed to load sqlite-vec extension: {e}")

                pragmas = {**self.DEFAULT_PRAGMAS}
                if config.timeout:
                    pragmas["busy_timeout"] = config.timeout * 1000
                if config.options.get("sqlite_pragmas"):
                    pragmas.update(config.options["sqlite_pragmas"])

                for pragma, value in pragmas.items():
                    try:
                        conn.execute(f"PRAGMA {pragma}={value}")
                    except sqlite3.Error as e:
                        logger.warning(f"Failed to set PRAGMA {pragma}={value}: {e}")

                conn.execute("SELECT 1").fetchone()
            except Exception:
                conn.close()
                raise
            return conn

        try:
            self._conn = await self._in_executor(_connect)
        except Exception as e:
            raise ConnectionFailedError(config.name, str(e)) from e

        self._connected = True
        logger.info(f"SQLite connection established: {config.name} ({config.path})")

    async def disconnect(self) -> None:
        """Close SQLite connection.

        Safe to call multiple times or if not connected.
        """
        conn = self._conn
        self._conn = None
        self._connected = False
        self._in_transaction = False
        if conn is None:
            return

        try:
            await self._in_executor(conn.close)
        except sqlite3.Error as e:
            raise DisconnectError(self.config.name, str(e)) from e
        logger.debug(f"Disconnected from SQLite database: {self.config.name}")

    async def _run(self, sql: str, params: tuple[Any, ...]) -> QueryResult:
        def _execute() -> QueryResult:
            assert self._conn is not None
            cursor = self._conn.execute(sql, params)

            # A description means the statement produced a result set
            if cursor.description:
                rows = [dict(row) for row in cursor.fetchall()]
                first = rows[0] if rows else {}
                fields = [
                    FieldInfo(
                        name=desc[0],
                        type=type(first[desc[0]]).__name__ if first else "unknown",
                    )
                    for desc in cursor.description
                ]
                result = QueryResult(rows=rows, row_count=len(rows), fields=fields)
            else:
                result = QueryResult(
                    row_count=max(cursor.rowcount, 0),
                    last_insert_id=cursor.lastrowid,
                )

            if not self._in_transaction and self._conn.in_transaction:
                self._conn.commit()
            return result

        return await self._in_executor(_execute)

    async def list_tables(self) -> list[str]:
        result = await self.execute_query(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in result.rows]

    async def list_catalog(self) -> list[dict[str, Any]]:
        """Describe the single database file behind this connection."""
        path = self.config.path or ":memory:"
        result = await self.execute_query(
            "SELECT COUNT(*) AS count FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
        )
        table_count = result.rows[0]["count"] if result.rows else 0

        db_file = Path(path)
        size = f"{db_file.stat().st_size} bytes" if db_file.is_file() else "Unknown"
        return [
            {
                "file": path,
                "size": size,
                "tables_count": str(table_count),
                "note": SINGLE_FILE_NOTE,
            }
        ]

    async def describe_table(self, table_name: str) -> TableSchema:
        quoted = _quote_identifier(table_name)
        info = await self.execute_query(f"PRAGMA table_info({quoted})")

        create_sql = await self.execute_query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table_name,)
        )
        ddl = str(create_sql.rows[0]["sql"] or "").upper() if create_sql.rows else ""
        has_autoincrement = "AUTOINCREMENT" in ddl

        columns = [
            ColumnInfo(
                name=row["name"],
                type=row["type"],
                nullable=row["notnull"] == 0,
                default_value=row["dflt_value"],
                auto_increment=has_autoincrement
                and row["pk"] > 0
                and str(row["type"]).upper() == "INTEGER",
            )
            for row in info.rows
        ]
        primary_keys = [
            row["name"] for row in sorted(info.rows, key=lambda r: r["pk"]) if row["pk"] > 0
        ]

        fk_rows = await self.execute_query(f"PRAGMA foreign_key_list({quoted})")
        foreign_keys = [
            ForeignKeyInfo(
                column_name=row["from"],
                referenced_table=row["table"],
                referenced_column=row["to"],
                on_delete=row["on_delete"],
                on_update=row["on_update"],
            )
            for row in fk_rows.rows
        ]

        indexes: list[IndexInfo] = []
        index_list = await self.execute_query(f"PRAGMA index_list({quoted})")
        for index_row in index_list.rows:
            index_name = index_row["name"]
            # Skip auto-generated primary key indexes
            if index_name.startswith("sqlite_autoindex_"):
                continue
            index_info = await self.execute_query(
                f"PRAGMA index_info({_quote_identifier(index_name)})"
            )
            unique = index_row["unique"] == 1
            indexes.append(
                IndexInfo(
                    name=index_name,
                    columns=[r["name"] for r in sorted(index_info.rows, key=lambda r: r["seqno"])],
                    unique=unique,
                    type="unique" if unique else "btree",
                )
            )

        return TableSchema(
            name=table_name,
            columns=columns,
            primary_keys=primary_keys,
            foreign_keys=foreign_keys,
            indexes=indexes,
        )

    async def begin_transaction(self, isolation_level: str | None = None) -> None:
        """Begin a transaction.

        SQLite supports special isolation modes:
            - None/default: DEFERRED (acquire lock on first write)
            - immediate: BEGIN IMMEDIATE (acquire write lock immediately)
            - exclusive: BEGIN EXCLUSIVE (block all other connections)
        """
        self._ensure_connected()

        mode = ""
        if isolation_level:
            level = isolation_level.lower()
            if level in ("immediate", "exclusive", "deferred"):
                mode = f" {level.upper()}"
            elif level == "serializable":
                mode = " IMMEDIATE"  # Closest equivalent

        def _begin() -> None:
            assert self._conn is not None
            self._conn.execute(f"BEGIN{mode}")

        await self._in_executor(_begin)
        self._in_transaction = True
        logger.debug(f"Started transaction (isolation={isolation_level})")

    async def commit(self) -> None:
        self._ensure_connected()
        assert self._conn is not None
        await self._in_executor(self._conn.commit)
        self._in_transaction = False

    async def rollback(self) -> None:
        """Rollback the current transaction.

        Safe to call even if no transaction is active.
        """
        if self._conn is None:
            return
        try:
            await self._in_executor(self._conn.rollback)
        except sqlite3.Error as e:
            logger.warning(f"Rollback failed on '{self.config.name}': {e}")
        self._in_transaction = False
