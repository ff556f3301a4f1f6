"""Shared formatting utilities for MCP tool responses.

Markdown renderings of the structured dicts produced by the decision logic.
JSON output is the dicts themselves; these helpers only cover the
human-readable variant.
"""

from typing import Any

# =============================================================================
# Markdown Formatting Utilities
# =============================================================================

STATUS_MARKERS = {
    "connected": "✅",
    "failed": "❌",
    "configured": "⏸️",
}


def format_connection_list_markdown(listing: dict[str, Any]) -> str:
    """Format a connection listing as markdown.

    Args:
        listing: Result of the list_connections decision (summary + connections)

    Returns:
        Markdown-formatted connection list with a summary section
    """
    summary = listing["summary"]
    connections = listing["connections"]

    if not connections:
        return "No database connections configured"

    lines = [
        f"## Database Connections ({summary['total_connections']})",
        "",
        f"- **Active**: {summary['active_connections']}",
        f"- **Failed**: {summary['failed_connections']}",
        "- **By type**: "
        + ", ".join(f"{kind} ({count})" for kind, count in sorted(summary["by_type"].items())),
        "",
    ]

    for conn in connections:
        marker = STATUS_MARKERS.get(conn["status"], "")
        lines.append(f"### {conn['name']} {marker}".rstrip())
        lines.append(f"- **Type**: {conn['type']}")
        lines.append(f"- **Status**: {conn['status']}")

        details = conn["details"]
        if "path" in details:
            lines.append(f"- **Path**: {details['path']}")
        else:
            lines.append(f"- **Host**: {details['host']}:{details['port']}")
            lines.append(f"- **Database**: {details['database']}")

        credentials = conn.get("credentials")
        if credentials:
            lines.append(f"- **Username**: {credentials['username']}")
            if credentials["password"]:
                lines.append(f"- **Password**: {credentials['password']}")

        settings = conn["settings"]
        lines.append(
            f"- **Pool**: max {settings['max_connections']} connections, "
            f"timeout {settings['timeout']}s"
        )
        if conn.get("last_attempt"):
            lines.append(f"- **Last attempt**: {conn['last_attempt']}")
        if conn.get("error"):
            lines.append(f"- **Error**: {conn['error']}")
        lines.append("")

    return "\n".join(lines).rstrip()
