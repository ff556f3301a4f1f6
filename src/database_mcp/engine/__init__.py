"""Connection engine core components.

Key Components:

- ConnectionConfig: Immutable description of one backend target
- LiveHandle: Connected driver plus its resolved catalog capability
- ConnectionRegistry: Per-name status records and live handles
- ConnectionManager: Add/remove/initialize/retry/disconnect lifecycle
- decisions: Auto-detection, mock fallback and dispatch rules used by the tools
- SQL backends: SQLite (sqlite3), PostgreSQL (asyncpg), MySQL (aiomysql)

Architecture:
- Configuration → registry entries → lifecycle operations mutate the registry
  → decision logic reads registry snapshots → tools render the results
- Connect failures are captured into status records, never raised from bulk operations
- Unknown connection names are always hard errors
"""

from . import decisions
from .exceptions import (
    CatalogQueryError,
    ConfigurationError,
    ConnectionFailedError,
    DatabaseMCPError,
    DisconnectError,
    QueryExecutionError,
    UnknownConnectionError,
)
from .fallback import mock_catalog, placeholder_catalog
from .manager import ConnectionManager, InitializeReport, RetryReport
from .registry import ConnectionRegistry, ConnectionStatus
from .sql import (
    DEFAULT_BACKENDS,
    BackendSpec,
    ConnectionConfig,
    DatabaseKind,
    LiveHandle,
    QueryResult,
    create_handle,
)

__all__ = [
    # Lifecycle
    "ConnectionManager",
    "ConnectionRegistry",
    "ConnectionStatus",
    "InitializeReport",
    "RetryReport",
    # Decision logic
    "decisions",
    "mock_catalog",
    "placeholder_catalog",
    # Backends
    "BackendSpec",
    "ConnectionConfig",
    "DEFAULT_BACKENDS",
    "DatabaseKind",
    "LiveHandle",
    "QueryResult",
    "create_handle",
    # Exceptions
    "CatalogQueryError",
    "ConfigurationError",
    "ConnectionFailedError",
    "DatabaseMCPError",
    "DisconnectError",
    "QueryExecutionError",
    "UnknownConnectionError",
]
