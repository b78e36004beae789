"""
Catalog extraction from Snowflake.

Extraction is a short chain of strategies. The optimized strategy issues
one set-based column query per database and degrades to a per-table walk
for any database whose batch query fails; if the optimized strategy fails
outright, the simple strategy walks every database, schema and table.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from catalog_sync.logging_config import get_logger
from catalog_sync.sync.exceptions import ExtractionError
from catalog_sync.sync.executor import RetryingQueryExecutor
from catalog_sync.sync.incremental import IncrementalFilter
from catalog_sync.sync.models import ColumnDescriptor, TableDescriptor
from catalog_sync.sync.sql import quote_identifier, quote_literal, row_value

SYSTEM_DATABASES = frozenset({"SNOWFLAKE", "INFORMATION_SCHEMA"})
SYSTEM_SCHEMAS = frozenset({"INFORMATION_SCHEMA"})


def is_system_database(name: Optional[str]) -> bool:
    return (name or "").upper() in SYSTEM_DATABASES


def is_system_schema(name: Optional[str]) -> bool:
    return (name or "").upper() in SYSTEM_SCHEMAS


def column_from_row(row: dict[str, Any]) -> ColumnDescriptor:
    default = row_value(row, "COLUMN_DEFAULT")
    comment = row_value(row, "COMMENT")
    return ColumnDescriptor(
        name=str(row_value(row, "COLUMN_NAME")),
        data_type=str(row_value(row, "DATA_TYPE")),
        nullable=str(row_value(row, "IS_NULLABLE") or "").upper() == "YES",
        default_value=None if default is None else str(default),
        comment=None if comment is None else str(comment),
    )


def group_columns_into_tables(
    database: str, rows: list[dict[str, Any]]
) -> list[TableDescriptor]:
    """Group column rows into tables keyed by (database, schema, table).

    Columns are ordered by ORDINAL_POSITION when the rows carry it.
    """
    tables: dict[tuple[str, str, str], TableDescriptor] = {}
    positions: dict[tuple[str, str, str], list[tuple[int, ColumnDescriptor]]] = {}

    for index, row in enumerate(rows):
        schema = row_value(row, "TABLE_SCHEMA")
        table = row_value(row, "TABLE_NAME")
        if not schema or not table or is_system_schema(schema):
            continue

        key = (database, str(schema), str(table))
        if key not in tables:
            tables[key] = TableDescriptor(database=database, schema=key[1], table=key[2])
            positions[key] = []

        position = row_value(row, "ORDINAL_POSITION")
        order = int(position) if position is not None else index
        positions[key].append((order, column_from_row(row)))

    for key, table in tables.items():
        table.columns = [col for _, col in sorted(positions[key], key=lambda p: p[0])]

    return list(tables.values())


def database_columns_query(database: str) -> str:
    """One set-based query returning every base-table column in a database."""
    db = quote_identifier(database)
    return f"""
        SELECT
            c.TABLE_SCHEMA,
            c.TABLE_NAME,
            c.COLUMN_NAME,
            c.DATA_TYPE,
            c.IS_NULLABLE,
            c.COLUMN_DEFAULT,
            c.COMMENT,
            c.ORDINAL_POSITION
        FROM {db}.INFORMATION_SCHEMA.COLUMNS c
        JOIN {db}.INFORMATION_SCHEMA.TABLES t
            ON t.TABLE_SCHEMA = c.TABLE_SCHEMA
            AND t.TABLE_NAME = c.TABLE_NAME
        WHERE t.TABLE_TYPE = 'BASE TABLE'
            AND UPPER(c.TABLE_SCHEMA) <> 'INFORMATION_SCHEMA'
        ORDER BY c.TABLE_SCHEMA, c.TABLE_NAME, c.ORDINAL_POSITION
    """


def table_columns_query(database: str, schema: str, table: str) -> str:
    return f"""
        SELECT
            COLUMN_NAME,
            DATA_TYPE,
            IS_NULLABLE,
            COLUMN_DEFAULT,
            COMMENT,
            ORDINAL_POSITION
        FROM {quote_identifier(database)}.INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = {quote_literal(schema)}
            AND TABLE_NAME = {quote_literal(table)}
        ORDER BY ORDINAL_POSITION
    """


class ExtractionStrategy(ABC):
    """One tier of the extraction chain."""

    name = "base"

    def __init__(
        self,
        executor: RetryingQueryExecutor,
        logger: Optional[logging.Logger] = None,
    ):
        self._executor = executor
        self._logger = logger or get_logger(__name__)

    @abstractmethod
    async def extract(self) -> list[TableDescriptor]:
        """Return every user table with its columns.

        Raises:
            ExtractionError: If the strategy cannot produce a catalog
        """

    async def list_databases(self) -> list[str]:
        """User databases, system databases removed. Failures propagate."""
        rows = await self._executor.execute("SHOW DATABASES")
        names = [row_value(row, "name") for row in rows]
        return [str(name) for name in names if name and not is_system_database(name)]

    async def list_schemas(self, database: str) -> list[str]:
        """User schemas of one database; empty when they cannot be listed."""
        try:
            rows = await self._executor.execute(
                f"SHOW SCHEMAS IN DATABASE {quote_identifier(database)}"
            )
        except Exception as e:
            self._logger.warning(f"Could not get schemas from {database}: {e}")
            return []
        names = [row_value(row, "name") for row in rows]
        return [str(name) for name in names if name and not is_system_schema(name)]

    async def list_tables(self, database: str, schema: str) -> list[str]:
        """Tables of one schema; empty when they cannot be listed."""
        try:
            rows = await self._executor.execute(
                f"SHOW TABLES IN SCHEMA {quote_identifier(database)}.{quote_identifier(schema)}"
            )
        except Exception as e:
            self._logger.warning(f"Could not get tables from {database}.{schema}: {e}")
            return []
        names = [row_value(row, "name") for row in rows]
        return [str(name) for name in names if name]

    async def list_columns(
        self, database: str, schema: str, table: str
    ) -> Optional[list[ColumnDescriptor]]:
        """Columns of one table, or None when the lookup failed."""
        try:
            rows = await self._executor.execute(table_columns_query(database, schema, table))
        except Exception as e:
            self._logger.warning(
                f"Could not fetch columns for {database}.{schema}.{table}: {e}"
            )
            return None
        positioned = sorted(
            enumerate(rows),
            key=lambda item: int(row_value(item[1], "ORDINAL_POSITION") or item[0]),
        )
        return [column_from_row(row) for _, row in positioned]


class SimpleExtraction(ExtractionStrategy):
    """Walk databases, schemas and tables, one column query per table."""

    name = "simple"

    async def extract(self) -> list[TableDescriptor]:
        self._logger.info("Starting simple metadata extraction...")
        try:
            databases = await self.list_databases()
        except Exception as e:
            raise ExtractionError(f"Could not list databases: {e}") from e

        tables: list[TableDescriptor] = []
        for database in databases:
            tables.extend(await self.extract_database(database))

        self._logger.info(f"Simple extraction found {len(tables)} tables")
        return tables

    async def extract_database(self, database: str) -> list[TableDescriptor]:
        """Per-table extraction of a single database.

        Tables whose column lookup fails are left out rather than stored
        with an empty column list.
        """
        tables: list[TableDescriptor] = []
        for schema in await self.list_schemas(database):
            for table in await self.list_tables(database, schema):
                columns = await self.list_columns(database, schema, table)
                if columns is None:
                    continue
                tables.append(
                    TableDescriptor(
                        database=database, schema=schema, table=table, columns=columns
                    )
                )
        self._logger.debug(f"Extracted {len(tables)} tables from {database} table by table")
        return tables


class OptimizedExtraction(ExtractionStrategy):
    """One INFORMATION_SCHEMA query per database, databases in parallel."""

    name = "optimized"

    def __init__(
        self,
        executor: RetryingQueryExecutor,
        fallback: Optional[SimpleExtraction] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(executor, logger)
        self._fallback = fallback

    async def extract(self) -> list[TableDescriptor]:
        try:
            return await self._extract_set_based()
        except Exception as e:
            if self._fallback is None:
                raise ExtractionError(f"Optimized extraction failed: {e}") from e
            self._logger.error(
                f"Optimized extraction failed, falling back to {self._fallback.name} extraction: {e}"
            )
            return await self._fallback.extract()

    async def _extract_set_based(self) -> list[TableDescriptor]:
        self._logger.info("Starting optimized metadata extraction...")
        databases = await self.list_databases()
        if not databases:
            self._logger.warning("No user databases found in account")
            return []

        # Each task returns its own list; results are merged after gather.
        per_database = await asyncio.gather(
            *(self._extract_database(database) for database in databases)
        )
        tables = [table for chunk in per_database for table in chunk]

        if not tables:
            self._logger.warning("No tables found in account")
        self._logger.info(
            f"Optimized extraction complete. Retrieved {len(tables)} tables "
            f"from {len(databases)} databases with {self._executor.metrics.queries} queries"
        )
        return tables

    async def _extract_database(self, database: str) -> list[TableDescriptor]:
        try:
            rows = await self._executor.execute(database_columns_query(database))
        except Exception as e:
            if self._fallback is None:
                raise
            self._logger.error(
                f"Failed to get columns for database {database}, "
                f"falling back to individual table queries: {e}"
            )
            return await self._fallback.extract_database(database)

        tables = group_columns_into_tables(database, rows)
        self._logger.info(f"Processed {len(tables)} tables in database: {database}")
        return tables


class CatalogExtractor:
    """Extract the warehouse catalog, optionally narrowed to recent changes."""

    def __init__(
        self,
        executor: RetryingQueryExecutor,
        strategy: Optional[ExtractionStrategy] = None,
        incremental_filter: Optional[IncrementalFilter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._logger = logger or get_logger(__name__)
        self._strategy = strategy or OptimizedExtraction(
            executor,
            fallback=SimpleExtraction(executor, logger=self._logger),
            logger=self._logger,
        )
        self._filter = incremental_filter or IncrementalFilter(executor, logger=self._logger)

    async def extract_catalog(
        self, since: Optional[datetime] = None
    ) -> list[TableDescriptor]:
        """Extract all user tables; when `since` is given keep only tables changed after it.

        Must be called while the warehouse connection is open.
        """
        tables = await self._strategy.extract()
        if since is None:
            return tables
        return await self._filter.filter(tables, since)
