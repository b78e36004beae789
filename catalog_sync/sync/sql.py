"""
SQL text helpers for Snowflake catalog queries.
"""

from typing import Any


def quote_identifier(name: str) -> str:
    """Double-quote an identifier, preserving its casing."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def row_value(row: dict[str, Any], name: str) -> Any:
    """Look up a result column regardless of the casing the driver used.

    SHOW commands return lower-case column names while INFORMATION_SCHEMA
    queries return upper-case ones.
    """
    for candidate in (name, name.upper(), name.lower()):
        if candidate in row:
            return row[candidate]
    return None
