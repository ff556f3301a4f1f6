"""MCP tool implementations for database access.

This module contains all MCP tool function implementations that expose
connection management, catalog browsing and query execution via the MCP
protocol. Decision rules live in engine.decisions; the tools here map call
arguments onto them.

Following official Anthropic MCP Python SDK patterns:
- Tool functions decorated with @mcp.tool()
- Flat parameter signatures with Annotated types for validation
- Type hints for automatic schema generation
- Async functions for all tools
- Clear docstrings (become tool descriptions)
"""

from typing import Annotated, Any, Literal

from mcp.types import ToolAnnotations
from pydantic import Field

from .context import AppContextType
from .engine import decisions
from .formatting import format_connection_list_markdown
from .server import mcp

CONTEXT_UNAVAILABLE = {
    "status": "error",
    "is_error": True,
    "error": "Server context not available. Tool requires context to access resources.",
}

# =============================================================================
# Connection and Catalog Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Databases",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,  # Queries remote database servers
    )
)
async def list_databases(
    connection_name: Annotated[
        str | None,
        Field(
            description=(
                "Connection to list databases from. Omit to auto-select the single "
                "active connection or get a summary of all connections."
            ),
            max_length=200,
        ),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List databases on a connection. Optional: connection_name (auto-detected when only one is active)."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    return await decisions.list_databases(app_ctx.manager, connection_name or None)


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Connections",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=False,
    )
)
async def list_connections(
    include_credentials: Annotated[
        bool,
        Field(description="Include username and a masked password marker"),
    ] = False,
    format: Annotated[  # noqa: A002
        Literal["json", "markdown"],
        Field(description="Output format"),
    ] = "json",
    *,
    ctx: AppContextType,
) -> dict[str, Any] | str:
    """List configured connections with status. Optional: include_credentials, format (json|markdown)."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    listing = await decisions.list_connections(app_ctx.manager, include_credentials)

    if format == "markdown":
        return format_connection_list_markdown(listing)
    return listing


@mcp.tool(
    annotations=ToolAnnotations(
        title="Retry Failed Connections",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=True,  # Connected entries are left untouched
        openWorldHint=True,
    )
)
async def retry_failed_connections(
    connection_name: Annotated[
        str | None,
        Field(description="Connection to retry. Omit to retry every failed connection.", max_length=200),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Retry failed database connections. Optional: connection_name (retry just one)."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    return await decisions.retry_failed_connections(app_ctx.manager, connection_name or None)


# =============================================================================
# Query and Schema Tools
# =============================================================================


@mcp.tool(
    annotations=ToolAnnotations(
        title="Execute Query",
        readOnlyHint=False,
        destructiveHint=True,  # Arbitrary SQL may modify data
        idempotentHint=False,
        openWorldHint=True,
    )
)
async def execute_query(
    connection_name: Annotated[
        str,
        Field(description="Connection to run the query on", min_length=1, max_length=200),
    ],
    query: Annotated[
        str,
        Field(description="SQL statement. Placeholders: ?, $1 or %s", min_length=1),
    ],
    parameters: Annotated[
        list[Any] | None,
        Field(description="Positional parameter values for the placeholders"),
    ] = None,
    database: Annotated[
        str | None,
        Field(description="Target database noted in the response (network databases)"),
    ] = None,
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Execute SQL on a connection. Required: connection_name, query. Optional: parameters, database."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    return await decisions.execute_query(
        app_ctx.manager, connection_name, query, parameters, database
    )


@mcp.tool(
    annotations=ToolAnnotations(
        title="List Tables",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def list_tables(
    connection_name: Annotated[
        str,
        Field(description="Connection to list tables from", min_length=1, max_length=200),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """List tables in a connection's database. Required: connection_name."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    return await decisions.list_tables(app_ctx.manager, connection_name)


@mcp.tool(
    annotations=ToolAnnotations(
        title="Describe Table",
        readOnlyHint=True,
        destructiveHint=False,
        idempotentHint=True,
        openWorldHint=True,
    )
)
async def describe_table(
    connection_name: Annotated[
        str,
        Field(description="Connection holding the table", min_length=1, max_length=200),
    ],
    table_name: Annotated[
        str,
        Field(description="Table to describe", min_length=1, max_length=200),
    ],
    *,
    ctx: AppContextType,
) -> dict[str, Any]:
    """Describe a table's columns, keys and indexes. Required: connection_name, table_name."""
    if ctx is None:
        return dict(CONTEXT_UNAVAILABLE)

    app_ctx = ctx.request_context.lifespan_context
    return await decisions.describe_table(app_ctx.manager, connection_name, table_name)
