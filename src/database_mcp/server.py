"""FastMCP server initialization for database-mcp.

This module initializes the MCP server and manages the connection manager via
the lifespan context. All tool implementations are in the tools module.

Following the official Anthropic Python SDK patterns:
- Lifespan context manager for resource initialization and cleanup
- Context injection for tool access to shared resources
- FastMCP server with stdio transport
"""

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from .context import AppContext, AppContextType
from .engine import ConnectionManager
from .settings import SettingsLoader

logger = logging.getLogger(__name__)

# =============================================================================
# Shared Resources and Lifespan Management
# =============================================================================


@asynccontextmanager
async def app_lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle with resource initialization and cleanup.

    This lifespan context manager:
    1. Loads connection settings from the connections file and environment
    2. Creates the connection manager
    3. Connects every configured database (or only registers them when
       DATABASE_MCP_CONNECT_ON_STARTUP=false)
    4. Yields context to make the manager available to tools
    5. Disconnects every connection on shutdown

    Args:
        _server: FastMCP server instance (unused, required by FastMCP signature)

    Yields:
        AppContext with settings and connection manager
    """
    logger.info("Initializing MCP server resources...")

    settings = SettingsLoader().load()
    manager = ConnectionManager()
    configs = settings.connection_configs()

    if settings.connect_on_startup:
        report = await manager.initialize(configs)
        if configs and report.succeeded == 0:
            logger.warning(
                "No database connections could be established. Tools will report "
                "connection status and fall back where possible."
            )
    else:
        manager.register(configs)
        logger.info(f"Registered {len(configs)} connection(s); connecting on first use")

    try:
        yield AppContext(settings=settings, manager=manager)
    finally:
        logger.info("Shutting down MCP server...")
        failures = await manager.disconnect_all()
        if failures:
            logger.warning(f"{len(failures)} connection(s) did not disconnect cleanly")


# Initialize MCP server with lifespan management
# Following Python MCP naming convention: {service}_mcp
mcp = FastMCP("database_mcp", lifespan=app_lifespan)


# =============================================================================
# Server Entry Point
# =============================================================================


def main() -> None:
    """Entry point for running the MCP server.

    This function is called when the server is run directly via:
    - python -m database_mcp
    - database-mcp (console script entry point)

    Defaults to stdio transport for MCP protocol communication.
    """
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("DATABASE_MCP_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid DATABASE_MCP_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    log_level = getattr(logging, log_level_str)

    # Configure logging to stderr (stdout carries the MCP protocol)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    logger.info("Starting MCP server (press Ctrl+C to stop)...")

    try:
        # anyio.run() (used internally by mcp.run()) raises KeyboardInterrupt on SIGINT
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
    except Exception as e:
        logger.exception(f"Server error: {e}")
        sys.exit(1)

    logger.info("Server shutdown complete")


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "mcp",
    "main",
    "app_lifespan",
    "AppContext",
    "AppContextType",
]
