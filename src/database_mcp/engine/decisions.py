"""
Decision logic behind the MCP tools.

Each function reads the ConnectionManager and returns a JSON-serializable dict.
Failures on known connections degrade to fallback data or error-flagged
responses (``is_error: True``); unknown connection names are always reported
as errors listing the valid names. Nothing here raises for either case.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any

from .exceptions import (
    CatalogQueryError,
    ConnectionFailedError,
    DatabaseMCPError,
    QueryExecutionError,
    UnknownConnectionError,
)
from .fallback import FALLBACK_NOTE, mock_catalog, placeholder_catalog
from .manager import ConnectionManager
from .registry import ConnectionStatus
from .sql import ConnectionConfig, convert_sql_for_kind

logger = logging.getLogger(__name__)

MASKED_PASSWORD = "***masked***"

NO_ACTIVE_MESSAGE = (
    "No active database connections found. All configured connections failed to "
    "connect or have not been attempted yet."
)
NO_ACTIVE_SUGGESTIONS = [
    "Check that the database servers are running and reachable from this host",
    "Verify the connection credentials (host, port, database, username, password)",
    "Use the retry_failed_connections tool to re-attempt failed connections",
    "Use the list_connections tool to inspect each connection's status and error",
]
MULTIPLE_ACTIVE_NOTE = (
    "Multiple connections available. Use connection_name parameter to list actual "
    "databases within a specific connection."
)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def unknown_connection_response(error: UnknownConnectionError) -> dict[str, Any]:
    """Error-flagged response for a name that is not configured."""
    return {
        "status": "error",
        "is_error": True,
        "error": str(error),
        "error_type": "UnknownConnection",
        "connection_name": error.name,
        "available_connections": error.available,
    }


def _connection_error_response(
    connection_name: str, error: BaseException, **extra: Any
) -> dict[str, Any]:
    return {
        "connection": {"name": connection_name},
        **extra,
        "error": {"message": str(error), "type": type(error).__name__},
        "metadata": {"timestamp": _timestamp()},
        "status": "error",
        "is_error": True,
    }


# ============================================================================
# Catalog listing
# ============================================================================


async def list_databases(
    manager: ConnectionManager, connection_name: str | None = None
) -> dict[str, Any]:
    """
    List databases reachable through a connection.

    Without ``connection_name``:
    - exactly one active connection: list its catalog (``auto_detected=True``)
    - no active connection: error-flagged response with remediation suggestions
    - several active connections: per-connection summary, no catalog queried

    With ``connection_name``: live catalog data, or canned data tagged
    ``mock_data_fallback`` when the connection or its catalog query fails.
    """
    if connection_name:
        try:
            config = manager.get_config(connection_name)
            return await _catalog_response(manager, config, auto_detected=False)
        except UnknownConnectionError as e:
            return unknown_connection_response(e)

    statuses = await manager.snapshot()
    active = [s for s in statuses if s.connected]

    if len(active) == 1:
        name = active[0].name
        logger.info(f"Auto-selecting single active connection for database listing: {name}")
        try:
            config = manager.get_config(name)
            return await _catalog_response(manager, config, auto_detected=True)
        except UnknownConnectionError as e:
            return unknown_connection_response(e)

    if not active:
        return {
            "status": "error",
            "is_error": True,
            "message": NO_ACTIVE_MESSAGE,
            "configured_connections": manager.configured_names(),
            "connection_statuses": [s.to_dict() for s in statuses],
            "suggestions": list(NO_ACTIVE_SUGGESTIONS),
        }

    by_name = {s.name: s for s in statuses}
    connections = [
        _summary_entry(manager.get_config(name), by_name.get(name))
        for name in manager.configured_names()
    ]
    return {
        "summary": {
            "total_connections": len(connections),
            "connected_connections": len(active),
            "note": MULTIPLE_ACTIVE_NOTE,
        },
        "connections": connections,
    }


async def _catalog_response(
    manager: ConnectionManager, config: ConnectionConfig, *, auto_detected: bool
) -> dict[str, Any]:
    try:
        handle = await manager.ensure_connected(config.name)
        if handle.catalog is None:
            databases = placeholder_catalog(config)
        else:
            try:
                databases = await handle.catalog()
            except Exception as e:
                raise CatalogQueryError(
                    f"Failed to list databases on '{config.name}': {e}"
                ) from e
    except (ConnectionFailedError, CatalogQueryError) as e:
        logger.error(f"Catalog listing failed for '{config.name}', using mock data: {e}")
        return {
            "connection": config.descriptor(),
            "databases": mock_catalog(config),
            "status": "mock_data_fallback",
            "error": str(e),
            "note": FALLBACK_NOTE,
            "auto_detected": auto_detected,
        }

    return {
        "connection": config.descriptor(),
        "databases": databases,
        "status": "real_data",
        "auto_detected": auto_detected,
    }


def _summary_entry(config: ConnectionConfig, status: ConnectionStatus | None) -> dict[str, Any]:
    connected = status is not None and status.connected
    return {
        "connection_name": config.name,
        **config.descriptor(),
        "status": "connected" if connected else "configured",
        "error": status.error if status else None,
        "last_attempt": _isoformat(status.last_attempt) if status else None,
    }


# ============================================================================
# Connection listing
# ============================================================================


async def list_connections(
    manager: ConnectionManager, include_credentials: bool = False
) -> dict[str, Any]:
    """
    Describe every configured connection merged with its current status.

    Passwords are never included; with ``include_credentials`` network
    connections report the username and a masked password marker.
    """
    by_name = {s.name: s for s in await manager.snapshot()}
    connections = []

    for name in manager.configured_names():
        config = manager.get_config(name)
        status = by_name.get(name)
        if status is None:
            state = "configured"
        elif status.connected:
            state = "connected"
        elif status.error is not None:
            state = "failed"
        else:
            state = "configured"

        entry: dict[str, Any] = {
            "key": name,
            "name": config.name,
            "type": config.kind.value,
            "status": state,
            "settings": {
                "max_connections": config.max_connections,
                "timeout": config.timeout,
            },
        }
        if config.is_network:
            entry["details"] = {
                "host": config.host,
                "port": config.port,
                "database": config.database,
            }
            if include_credentials:
                entry["credentials"] = {
                    "username": config.username,
                    "password": MASKED_PASSWORD if config.password else None,
                }
        else:
            entry["details"] = {"path": config.path}

        entry["error"] = status.error if status else None
        entry["last_attempt"] = _isoformat(status.last_attempt) if status else None
        connections.append(entry)

    states = Counter(c["status"] for c in connections)
    return {
        "summary": {
            "total_connections": len(connections),
            "by_type": dict(Counter(c["type"] for c in connections)),
            "configured_connections": len(connections),
            "active_connections": states["connected"],
            "failed_connections": states["failed"],
        },
        "connections": connections,
    }


# ============================================================================
# Retry dispatch
# ============================================================================


async def retry_failed_connections(
    manager: ConnectionManager, connection_name: str | None = None
) -> dict[str, Any]:
    """
    Re-attempt failed connections, one by name or all at once.

    A named retry reports ``already_connected``, ``connected`` or ``failed``
    (error-flagged, with the underlying message). A retry of all reports
    aggregate counts and the refreshed status of every connection.
    """
    if connection_name:
        try:
            report = await manager.retry_failed(connection_name)
            config = manager.get_config(connection_name)
        except UnknownConnectionError as e:
            return unknown_connection_response(e)

        status = manager.get_status(connection_name)
        last_attempt = _isoformat(status.last_attempt) if status else None

        if report.already_connected:
            return {
                "connection": config.descriptor(),
                "status": "connected",
                "result": "already_connected",
                "message": f"Connection '{connection_name}' is already connected",
            }
        if status is not None and status.connected:
            return {
                "connection": config.descriptor(),
                "status": "connected",
                "result": "reconnected",
                "message": f"Successfully reconnected to '{connection_name}'",
                "last_attempt": last_attempt,
            }
        return {
            "connection": config.descriptor(),
            "status": "failed",
            "is_error": True,
            "error": report.failures.get(connection_name)
            or (status.error if status else None)
            or "Unknown error",
            "message": f"Failed to reconnect to '{connection_name}'",
            "last_attempt": last_attempt,
        }

    report = await manager.retry_failed()
    if report.attempted == 0:
        message = "No failed connections to retry"
    else:
        message = f"Retried {report.attempted} connection(s): {report.succeeded} succeeded, {report.failed} failed"
    return {
        "summary": {
            "attempted": report.attempted,
            "succeeded": report.succeeded,
            "failed": report.failed,
        },
        "failures": dict(report.failures),
        "connection_statuses": [s.to_dict() for s in report.statuses],
        "message": message,
    }


# ============================================================================
# Query and table dispatch
# ============================================================================


async def execute_query(
    manager: ConnectionManager,
    connection_name: str,
    query: str,
    parameters: list[Any] | None = None,
    database: str | None = None,
) -> dict[str, Any]:
    """
    Run ``query`` on a named connection, connecting it first if needed.

    Placeholders written as ``?``, ``$n`` or ``%s`` are converted to the
    backend's native style.
    """
    params = list(parameters or [])
    started = time.perf_counter()

    try:
        config = manager.get_config(connection_name)
        handle = await manager.ensure_connected(connection_name)

        target_database = database or config.database
        notes: list[str] = []
        if target_database and config.is_network:
            notes.append(f"Executed on database: {target_database}")

        sql, values = convert_sql_for_kind(query, params, config.kind)
        logger.info(
            f"Executing query on '{connection_name}' "
            f"(length={len(query)}, params={len(values)}, database={target_database})"
        )
        result = await handle.driver.execute_query(sql, values)
    except UnknownConnectionError as e:
        return unknown_connection_response(e)
    except DatabaseMCPError as e:
        logger.error(f"Query on '{connection_name}' failed: {e}")
        return _connection_error_response(
            connection_name, e, query={"sql": query, "parameters": params}
        )

    total_ms = round((time.perf_counter() - started) * 1000, 3)
    return {
        "connection": {
            "name": connection_name,
            "type": config.kind.value,
            "database": target_database,
        },
        "query": {
            "sql": query,
            "parameters": params,
            "execution_time_ms": result.execution_time_ms,
            "total_time_ms": total_ms,
        },
        "result": result.to_dict(),
        "metadata": {"timestamp": _timestamp(), "notes": notes},
        "status": "success",
    }


async def list_tables(manager: ConnectionManager, connection_name: str) -> dict[str, Any]:
    """List tables in the connection's current database or schema."""
    try:
        config = manager.get_config(connection_name)
        handle = await manager.ensure_connected(connection_name)
        tables = await handle.driver.list_tables()
    except UnknownConnectionError as e:
        return unknown_connection_response(e)
    except DatabaseMCPError as e:
        logger.error(f"Listing tables on '{connection_name}' failed: {e}")
        return _connection_error_response(connection_name, e)

    return {
        "connection": config.descriptor(),
        "tables": tables,
        "count": len(tables),
        "status": "success",
    }


async def describe_table(
    manager: ConnectionManager, connection_name: str, table_name: str
) -> dict[str, Any]:
    """Columns, primary keys, foreign keys and indexes of one table."""
    try:
        config = manager.get_config(connection_name)
        handle = await manager.ensure_connected(connection_name)
        schema = await handle.driver.describe_table(table_name)
        if not schema.columns:
            raise QueryExecutionError(
                f"Table '{table_name}' not found on connection '{connection_name}'"
            )
    except UnknownConnectionError as e:
        return unknown_connection_response(e)
    except DatabaseMCPError as e:
        logger.error(f"Describing table '{table_name}' on '{connection_name}' failed: {e}")
        return _connection_error_response(connection_name, e, table=table_name)

    return {
        "connection": config.descriptor(),
        "table": schema.to_dict(),
        "status": "success",
    }
