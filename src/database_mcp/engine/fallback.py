"""Canned catalog data returned when a configured connection cannot be queried."""

from __future__ import annotations

from typing import Any

from .sql import ConnectionConfig, DatabaseKind
from .sql.sqlite_backend import SINGLE_FILE_NOTE

FALLBACK_NOTE = (
    "Could not connect to database, showing mock data. Check your connection configuration."
)
CATALOG_UNSUPPORTED_NOTE = "Database listing not fully supported for this driver type"

DEFAULT_DATABASE_NAME = "myapp"


def mock_catalog(config: ConnectionConfig) -> list[dict[str, Any]]:
    """Deterministic stand-in catalog for ``config``'s kind."""
    database = config.database or DEFAULT_DATABASE_NAME

    if config.kind is DatabaseKind.POSTGRESQL:
        system = [
            {"name": name, "size": "8 MB", "owner": "postgres", "encoding": "UTF8"}
            for name in ("postgres", "template0", "template1")
        ]
        return [
            *system,
            {
                "name": database,
                "size": "15 MB",
                "owner": config.username or "user",
                "encoding": "UTF8",
            },
        ]

    if config.kind is DatabaseKind.MYSQL:
        system = [
            {"name": name, "type": "SYSTEM SCHEMA"}
            for name in ("information_schema", "performance_schema", "mysql", "sys")
        ]
        return [*system, {"name": database, "type": "BASE TABLE"}]

    if config.kind is DatabaseKind.SQLITE:
        return [
            {
                "file": config.path,
                "size": "Unknown (file not accessed)",
                "tables_count": "Unknown",
                "note": SINGLE_FILE_NOTE,
            }
        ]

    return []


def placeholder_catalog(config: ConnectionConfig) -> list[dict[str, Any]]:
    """Single-entry catalog for live backends without catalog listing."""
    return [
        {
            "name": config.database or "default",
            "type": "database",
            "note": CATALOG_UNSUPPORTED_NOTE,
        }
    ]
