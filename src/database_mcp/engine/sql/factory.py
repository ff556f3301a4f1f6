"""Backend table and live handle construction.

The backend table maps each DatabaseKind to the class implementing it and
declares whether that class offers catalog listing. A LiveHandle carries the
driver together with the catalog capability resolved from that table, so
callers never inspect driver attributes at runtime.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..exceptions import ConfigurationError
from .backend import ConnectionConfig, DatabaseBackend, DatabaseKind
from .mysql_backend import MySQLBackend
from .postgres_backend import PostgresBackend
from .sqlite_backend import SqliteBackend

logger = logging.getLogger(__name__)

CatalogFn = Callable[[], Awaitable[list[dict[str, Any]]]]


@dataclass(frozen=True)
class BackendSpec:
    """One row of the backend table.

    Attributes:
        kind: Database kind served by this backend
        backend_cls: Class constructed with a ConnectionConfig
        catalog: Whether instances implement ``list_catalog()``
    """

    kind: DatabaseKind
    backend_cls: Callable[[ConnectionConfig], DatabaseBackend]
    catalog: bool = False


DEFAULT_BACKENDS: dict[DatabaseKind, BackendSpec] = {
    DatabaseKind.SQLITE: BackendSpec(DatabaseKind.SQLITE, SqliteBackend, catalog=True),
    DatabaseKind.POSTGRESQL: BackendSpec(DatabaseKind.POSTGRESQL, PostgresBackend, catalog=True),
    DatabaseKind.MYSQL: BackendSpec(DatabaseKind.MYSQL, MySQLBackend, catalog=True),
}


@dataclass(frozen=True)
class LiveHandle:
    """A driver plus its resolved catalog capability.

    ``catalog`` is None when the backend does not offer catalog listing.
    """

    kind: DatabaseKind
    driver: DatabaseBackend
    catalog: CatalogFn | None = None

    async def disconnect(self) -> None:
        await self.driver.disconnect()


def validate_config(config: ConnectionConfig) -> None:
    """Check the fields each kind needs before a driver is built.

    Raises:
        ConfigurationError: If a required field is missing
    """
    if not config.name:
        raise ConfigurationError("Connection name is required")

    if config.kind in (DatabaseKind.POSTGRESQL, DatabaseKind.MYSQL):
        for attr, label in (("host", "Host"), ("database", "Database name"), ("username", "Username")):
            if not getattr(config, attr):
                raise ConfigurationError(f"{label} is required for {config.kind.value} database")
    elif config.kind is DatabaseKind.SQLITE:
        if not config.path:
            raise ConfigurationError("Path is required for SQLite database")


def create_handle(
    config: ConnectionConfig,
    backends: Mapping[DatabaseKind, BackendSpec] | None = None,
) -> LiveHandle:
    """Validate ``config`` and build an unconnected handle for it.

    Raises:
        ConfigurationError: If the config is invalid or no backend serves its kind
    """
    validate_config(config)
    table = DEFAULT_BACKENDS if backends is None else backends

    spec = table.get(config.kind)
    if spec is None:
        raise ConfigurationError(f"Unsupported database type: {config.kind.value}")

    driver = spec.backend_cls(config)
    catalog: CatalogFn | None = getattr(driver, "list_catalog") if spec.catalog else None
    logger.debug(f"Created {config.kind.value} driver for '{config.name}'")
    return LiveHandle(kind=config.kind, driver=driver, catalog=catalog)
