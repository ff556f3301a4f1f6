"""Shared context types for MCP server.

This module contains context types used across server and tools modules,
separated to avoid circular imports.
"""

from dataclasses import dataclass

from mcp.server.fastmcp import Context
from mcp.server.session import ServerSession

from .engine import ConnectionManager
from .settings import Settings


@dataclass
class AppContext:
    """Application context containing shared resources for MCP tools.

    Created during server startup and made available to all tools via the
    Context parameter. Owns the connection manager for the life of the server.
    """

    settings: Settings
    manager: ConnectionManager


# Type alias for MCP tool context parameter
AppContextType = Context[ServerSession, AppContext]


__all__ = ["AppContext", "AppContextType"]
