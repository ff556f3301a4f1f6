"""Connection settings loaded from files and environment variables.

Connections are gathered in priority order:

1. DATABASE_CONNECTIONS_FILE: path to a JSON or YAML file holding a list of
   connection objects (or a mapping with a ``connections`` list)
2. DATABASE_CONNECTIONS: the same list as a JSON string (deprecated)
3. Individual environment variables, which override entries of the same name:
   - SQLITE_DB_PATH                       -> connection "sqlite"
   - POSTGRES_HOST/PORT/DATABASE/USERNAME/PASSWORD -> connection "postgres"
   - MYSQL_HOST/PORT/DATABASE/USERNAME/PASSWORD    -> connection "mysql"
   - MAX_CONNECTIONS, CONNECTION_TIMEOUT (shared by the above)

Example connections file:
```yaml
connections:
  - name: analytics
    type: postgresql
    host: db.internal
    database: analytics
    username: reader
    password: secret
    maxConnections: 5

  - name: local
    type: sqlite
    path: ./data/local.db
```

Server options:
- DATABASE_MCP_CONNECT_ON_STARTUP: connect every configured database when the
  server starts (default: true). When false, connections are made on first use.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .engine.exceptions import ConfigurationError
from .engine.sql import ConnectionConfig, DatabaseKind

logger = logging.getLogger(__name__)

# Timeouts at or above this are read as milliseconds (older connection files)
LEGACY_MS_THRESHOLD = 1000

# ===========================================================================
# Configuration Models
# ===========================================================================


class ConnectionSettings(BaseModel):
    """One configured database connection.

    Accepts the camelCase keys used by existing connection files
    (``type``, ``maxConnections``, ``connectTimeout``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1, description="Unique connection name")
    kind: DatabaseKind = Field(alias="type", description="sqlite, postgresql or mysql")
    path: str | None = Field(default=None, description="[SQLite] Database file path")
    host: str | None = Field(default=None, description="Database server host")
    port: int | None = Field(default=None, ge=1, le=65535, description="Database server port")
    database: str | None = Field(default=None, description="Database name")
    username: str | None = Field(default=None, description="Database username")
    password: str | None = Field(default=None, repr=False, description="Database password")
    ssl: bool | str = Field(default=False, description="Enable SSL or give an sslmode")
    max_connections: int = Field(
        default=10, ge=1, le=1000, alias="maxConnections", description="Pool size"
    )
    timeout: int = Field(default=30, ge=1, description="Query timeout in seconds")
    connect_timeout: int = Field(
        default=10, ge=1, alias="connectTimeout", description="Connect timeout in seconds"
    )
    options: dict[str, Any] = Field(default_factory=dict, description="Backend-specific options")

    @field_validator("timeout", "connect_timeout")
    @classmethod
    def convert_legacy_milliseconds(cls, v: int) -> int:
        """Read large timeout values as milliseconds."""
        if v >= LEGACY_MS_THRESHOLD:
            return max(1, v // 1000)
        return v

    def to_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            name=self.name,
            kind=self.kind,
            path=self.path,
            host=self.host,
            port=self.port,
            database=self.database,
            username=self.username,
            password=self.password,
            ssl=self.ssl,
            max_connections=self.max_connections,
            timeout=self.timeout,
            connect_timeout=self.connect_timeout,
            options=dict(self.options),
        )


class Settings(BaseModel):
    """Root settings model."""

    connections: list[ConnectionSettings] = Field(default_factory=list)
    connect_on_startup: bool = Field(
        default=True,
        description="Connect every configured database during server startup",
    )

    def connection_configs(self) -> list[ConnectionConfig]:
        return [c.to_config() for c in self.connections]


# ===========================================================================
# Settings Loader
# ===========================================================================


class SettingsLoader:
    """Builds Settings from a connections file and environment variables.

    Usage:
        ```python
        settings = SettingsLoader().load()
        report = await manager.initialize(settings.connection_configs())
        ```
    """

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        connections_file: str | Path | None = None,
    ):
        """Initialize loader.

        Args:
            environ: Environment mapping (defaults to os.environ)
            connections_file: Explicit connections file, overriding
                DATABASE_CONNECTIONS_FILE
        """
        self._environ = os.environ if environ is None else environ
        self._explicit_file = Path(connections_file) if connections_file else None
        self._settings: Settings | None = None

    def load(self) -> Settings:
        """Load and validate settings. The result is cached.

        Raises:
            ConfigurationError: If a source cannot be read or fails validation
        """
        if self._settings is not None:
            return self._settings

        entries: dict[str, dict[str, Any]] = {}
        for entry in self._load_structured_connections():
            entries[self._entry_name(entry)] = entry

        individual = self._individual_connections()
        if individual:
            logger.info(
                f"Loaded {len(individual)} database connection(s) from individual "
                f"environment variables: {', '.join(individual)}"
            )
        entries.update(individual)

        try:
            settings = Settings(
                connections=[ConnectionSettings.model_validate(e) for e in entries.values()],
                connect_on_startup=self._get_bool("DATABASE_MCP_CONNECT_ON_STARTUP", True),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        if not settings.connections:
            logger.warning("No database configurations found in environment variables")
        else:
            logger.info(
                f"Configuration loaded: {len(settings.connections)} connection(s) "
                f"({', '.join(c.name for c in settings.connections)})"
            )

        self._settings = settings
        return settings

    def get_connections_file(self) -> Path | None:
        """Explicit path first, then DATABASE_CONNECTIONS_FILE."""
        if self._explicit_file:
            return self._explicit_file
        env_path = self._environ.get("DATABASE_CONNECTIONS_FILE")
        if env_path:
            return Path(env_path).expanduser()
        return None

    def _load_structured_connections(self) -> list[dict[str, Any]]:
        connections_file = self.get_connections_file()
        if connections_file is not None:
            entries = self._read_connections_file(connections_file)
            logger.info(
                f"Loaded {len(entries)} database connection(s) from file: {connections_file}"
            )
            return entries

        raw = self._environ.get("DATABASE_CONNECTIONS")
        if raw:
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid DATABASE_CONNECTIONS JSON: {e}") from e
            entries = self._as_entry_list(parsed, "DATABASE_CONNECTIONS")
            logger.info(
                f"Loaded {len(entries)} database connection(s) from DATABASE_CONNECTIONS"
            )
            logger.warning(
                "Using DATABASE_CONNECTIONS environment variable is deprecated. "
                "Consider using DATABASE_CONNECTIONS_FILE instead."
            )
            return entries

        return []

    def _read_connections_file(self, path: Path) -> list[dict[str, Any]]:
        resolved = path.resolve()
        if not resolved.is_file():
            raise ConfigurationError(f"Database connections file not found: {resolved}")

        try:
            with open(resolved, encoding="utf-8") as f:
                if resolved.suffix.lower() == ".json":
                    parsed = json.load(f)
                else:
                    parsed = yaml.safe_load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in database connections file {resolved}: {e}"
            ) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in database connections file {resolved}: {e}"
            ) from e

        return self._as_entry_list(parsed, str(resolved))

    @staticmethod
    def _as_entry_list(parsed: Any, source: str) -> list[dict[str, Any]]:
        if isinstance(parsed, dict) and "connections" in parsed:
            parsed = parsed["connections"]
        if not isinstance(parsed, list) or not all(isinstance(e, dict) for e in parsed):
            raise ConfigurationError(f"{source} must contain a list of connection objects")
        return parsed

    @staticmethod
    def _entry_name(entry: dict[str, Any]) -> str:
        name = entry.get("name")
        if not name:
            raise ConfigurationError(f"Connection entry is missing a name: {entry}")
        return str(name)

    def _individual_connections(self) -> dict[str, dict[str, Any]]:
        shared = {
            "max_connections": self._get_int("MAX_CONNECTIONS", 10),
            "timeout": self._get_int("CONNECTION_TIMEOUT", 30),
        }
        connections: dict[str, dict[str, Any]] = {}

        sqlite_path = self._environ.get("SQLITE_DB_PATH")
        if sqlite_path:
            connections["sqlite"] = {
                "name": "sqlite",
                "kind": DatabaseKind.SQLITE,
                "path": sqlite_path,
                **shared,
            }

        for name, prefix, kind, default_port in (
            ("postgres", "POSTGRES", DatabaseKind.POSTGRESQL, 5432),
            ("mysql", "MYSQL", DatabaseKind.MYSQL, 3306),
        ):
            host = self._environ.get(f"{prefix}_HOST")
            if not host:
                continue
            connections[name] = {
                "name": name,
                "kind": kind,
                "host": host,
                "port": self._get_int(f"{prefix}_PORT", default_port),
                "database": self._environ.get(f"{prefix}_DATABASE"),
                "username": self._environ.get(f"{prefix}_USERNAME"),
                "password": self._environ.get(f"{prefix}_PASSWORD"),
                **shared,
            }

        return connections

    def _get_int(self, key: str, default: int) -> int:
        raw = self._environ.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigurationError(f"{key} must be an integer, got '{raw}'") from e

    def _get_bool(self, key: str, default: bool) -> bool:
        raw = self._environ.get(key)
        if raw is None or raw.strip() == "":
            return default
        return raw.strip().lower() in ("1", "true", "yes", "on")
