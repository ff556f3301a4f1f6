"""SQL database backends for the connection engine.

This module provides a unified interface over multiple database backends:
SQLite, PostgreSQL, and MySQL/MariaDB.

Features:
    - Pluggable backend table with declared catalog capability
    - Automatic parameter placeholder conversion between backends
    - Connection pooling for remote databases
    - Transaction support with isolation levels
    - Table listing and schema description

Usage:
    from database_mcp.engine.sql import ConnectionConfig, DatabaseKind, create_handle

    handle = create_handle(ConnectionConfig(
        name="local", kind=DatabaseKind.SQLITE, path="/data/app.db"
    ))
    await handle.driver.connect()
    if handle.catalog is not None:
        databases = await handle.catalog()
"""

from .backend import (
    ColumnInfo,
    ConnectionConfig,
    DatabaseBackend,
    DatabaseBackendBase,
    DatabaseKind,
    FieldInfo,
    ForeignKeyInfo,
    IndexInfo,
    Params,
    QueryResult,
    TableSchema,
    parse_affected_rows,
)
from .factory import DEFAULT_BACKENDS, BackendSpec, LiveHandle, create_handle, validate_config
from .mysql_backend import MySQLBackend
from .param_converter import ParamConverter, convert_sql_for_kind, detect_format
from .postgres_backend import PostgresBackend
from .sqlite_backend import SqliteBackend

__all__ = [
    # Core types
    "ColumnInfo",
    "ConnectionConfig",
    "DatabaseBackend",
    "DatabaseBackendBase",
    "DatabaseKind",
    "FieldInfo",
    "ForeignKeyInfo",
    "IndexInfo",
    "Params",
    "QueryResult",
    "TableSchema",
    "parse_affected_rows",
    # Backend table
    "BackendSpec",
    "DEFAULT_BACKENDS",
    "LiveHandle",
    "create_handle",
    "validate_config",
    # Parameter conversion
    "ParamConverter",
    "convert_sql_for_kind",
    "detect_format",
    # Backends
    "SqliteBackend",
    "PostgresBackend",
    "MySQLBackend",
]
