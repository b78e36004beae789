"""
Incremental narrowing of an extracted catalog to recently modified tables.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from catalog_sync.logging_config import get_logger
from catalog_sync.sync.models import TableDescriptor
from catalog_sync.sync.sql import quote_identifier, quote_literal, row_value


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    return None


def last_altered_query(database: str, tables: Sequence[TableDescriptor]) -> str:
    """LAST_ALTERED for every candidate table of one database in a single query."""
    predicates = " OR ".join(
        f"(TABLE_SCHEMA = {quote_literal(t.schema)} AND TABLE_NAME = {quote_literal(t.table)})"
        for t in tables
    )
    return f"""
        SELECT TABLE_SCHEMA, TABLE_NAME, LAST_ALTERED
        FROM {quote_identifier(database)}.INFORMATION_SCHEMA.TABLES
        WHERE {predicates}
    """


class IncrementalFilter:
    """Keep tables modified after a watermark.

    A table whose modification time cannot be resolved is kept: an
    unnecessary re-sync costs one write, a dropped table is lost data.
    """

    def __init__(self, executor: Any, logger: Optional[logging.Logger] = None):
        self._executor = executor
        self._logger = logger or get_logger(__name__)

    async def filter(
        self,
        tables: Sequence[TableDescriptor],
        since: Optional[datetime],
    ) -> list[TableDescriptor]:
        """Return the tables changed after `since` (all of them when since is None)."""
        if since is None or not tables:
            return list(tables)

        watermark = as_utc(since)

        by_database: dict[str, list[TableDescriptor]] = {}
        for table in tables:
            by_database.setdefault(table.database, []).append(table)

        kept: list[TableDescriptor] = []
        for database, db_tables in by_database.items():
            modified = await self._last_altered(database, db_tables)
            for table in db_tables:
                altered = modified.get(table.comparison_key)
                if altered is None or altered > watermark:
                    kept.append(table)

        self._logger.info(
            f"Incremental filter kept {len(kept)} of {len(tables)} tables "
            f"modified since {watermark.isoformat()}"
        )
        return kept

    async def _last_altered(
        self, database: str, tables: list[TableDescriptor]
    ) -> dict[tuple[str, str, str], Optional[datetime]]:
        """Modification times by comparison key; empty when the lookup fails."""
        try:
            rows = await self._executor.execute(last_altered_query(database, tables))
        except Exception as e:
            self._logger.warning(
                f"Could not resolve modification times for {database}, "
                f"keeping all {len(tables)} tables: {e}"
            )
            return {}

        result: dict[tuple[str, str, str], Optional[datetime]] = {}
        for row in rows:
            schema = row_value(row, "TABLE_SCHEMA")
            table = row_value(row, "TABLE_NAME")
            if schema is None or table is None:
                continue
            key = (database.upper(), str(schema).upper(), str(table).upper())
            result[key] = _parse_timestamp(
                row_value(row, "LAST_ALTERED")
            )
        return result
