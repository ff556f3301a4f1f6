"""Exception hierarchy for the connection engine.

Exception Hierarchy:
    DatabaseMCPError (base)
    ├── ConfigurationError (invalid settings or connection config)
    ├── UnknownConnectionError (name not configured, always a hard error)
    ├── ConnectionFailedError (connect attempt failed, captured into status)
    ├── DisconnectError (disconnect failed, never blocks cleanup)
    ├── QueryExecutionError (driver query failed)
    └── CatalogQueryError (catalog listing failed, converted to fallback data)
"""

from __future__ import annotations

from collections.abc import Iterable


class DatabaseMCPError(Exception):
    """Base exception for all database-mcp errors."""

    pass


class ConfigurationError(DatabaseMCPError):
    """Settings or a connection config failed validation."""

    pass


class UnknownConnectionError(DatabaseMCPError):
    """
    A connection name was requested that is not configured.

    Attributes:
        name: The requested connection name
        available: All configured connection names at the time of the request
    """

    def __init__(self, name: str, available: Iterable[str]):
        self.name = name
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "(none)"
        super().__init__(f"Connection '{name}' not found. Available connections: {listing}")

    def __repr__(self) -> str:
        return f"UnknownConnectionError(name={self.name!r}, available={self.available!r})"


class ConnectionFailedError(DatabaseMCPError):
    """
    A connect attempt failed.

    Attributes:
        name: Connection name
        reason: Underlying error message
    """

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to connect to database '{name}': {reason}")


class DisconnectError(DatabaseMCPError):
    """Closing a live handle failed."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Failed to disconnect from database '{name}': {reason}")


class QueryExecutionError(DatabaseMCPError):
    """A statement failed on the backend."""

    pass


class CatalogQueryError(DatabaseMCPError):
    """Listing the catalog of a connection failed."""

    pass
