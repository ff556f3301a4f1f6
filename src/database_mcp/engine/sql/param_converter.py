"""Parameter placeholder normalization for cross-backend SQL.

Queries arrive from tool callers that do not necessarily know which backend a
connection points at. This module rewrites positional placeholders into the
native style of the target backend:

    - ? (qmark) - SQLite native format
    - $1, $2, ... (numeric) - PostgreSQL native format
    - %s (format) - MySQL native format

Numeric placeholders may repeat or appear out of order; parameters are
reordered accordingly when converting away from them.
"""

from __future__ import annotations

import re
from typing import Any

from .backend import DatabaseKind

QMARK_PATTERN = re.compile(r"(?<![:%$?])\?(?!\?)")  # ? but not ?? or :? or %? or $?
NUMERIC_PATTERN = re.compile(r"\$(\d+)")  # $1, $2, etc.
FORMAT_PATTERN = re.compile(r"(?<!%)%s(?!s)")  # %s but not %%s or %ss

NATIVE_FORMAT = {
    DatabaseKind.SQLITE: "qmark",
    DatabaseKind.POSTGRESQL: "numeric",
    DatabaseKind.MYSQL: "format",
}


class ParamConverter:
    """Converts SQL parameter placeholders to a backend's native format.

    Example:
        converter = ParamConverter(DatabaseKind.POSTGRESQL)
        sql, params = converter.convert("SELECT * FROM users WHERE id = ? AND status = ?", (1, "a"))
        # sql: "SELECT * FROM users WHERE id = $1 AND status = $2"
    """

    def __init__(self, target: DatabaseKind):
        self.target = target

    def convert(
        self, sql: str, params: tuple[Any, ...] | list[Any] | None = None
    ) -> tuple[str, tuple[Any, ...]]:
        """Convert placeholders in ``sql`` and align ``params`` with them."""
        values = tuple(params) if params else ()
        source = detect_format(sql)
        target = NATIVE_FORMAT[self.target]

        if source == "none" or source == target:
            return sql, values

        if source == "numeric":
            # Expand $n references into positional order
            order = [int(m) - 1 for m in NUMERIC_PATTERN.findall(sql)]
            if any(index >= len(values) for index in order):
                return sql, values
            values = tuple(values[index] for index in order)
            pattern = NUMERIC_PATTERN
        elif source == "qmark":
            pattern = QMARK_PATTERN
        else:
            pattern = FORMAT_PATTERN

        counter = iter(range(1, len(pattern.findall(sql)) + 1))

        def _replace(_match: re.Match[str]) -> str:
            position = next(counter)
            if target == "numeric":
                return f"${position}"
            if target == "format":
                return "%s"
            return "?"

        return pattern.sub(_replace, sql), values


def detect_format(sql: str) -> str:
    """Detect the placeholder format used in SQL.

    Returns:
        One of: "qmark", "numeric", "format", "none"
    """
    if QMARK_PATTERN.search(sql):
        return "qmark"
    if NUMERIC_PATTERN.search(sql):
        return "numeric"
    if FORMAT_PATTERN.search(sql):
        return "format"
    return "none"


def convert_sql_for_kind(
    sql: str, params: tuple[Any, ...] | list[Any] | None, kind: DatabaseKind
) -> tuple[str, tuple[Any, ...]]:
    """Convenience wrapper around ParamConverter.convert."""
    return ParamConverter(kind).convert(sql, params)
