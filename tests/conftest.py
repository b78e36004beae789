"""
Shared test fixtures for the catalog sync test suite.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from catalog_sync.sync.catalog_store import CatalogStore
from catalog_sync.sync.exceptions import ConnectionError
from catalog_sync.sync.models import ColumnDescriptor, TableDescriptor

_IDENTIFIER = re.compile(r'"((?:[^"]|"")*)"')
_SCHEMA_LITERAL = re.compile(r"TABLE_SCHEMA = '((?:[^']|'')*)'")
_TABLE_LITERAL = re.compile(r"TABLE_NAME = '((?:[^']|'')*)'")


def _identifiers(query: str) -> list[str]:
    return [m.replace('""', '"') for m in _IDENTIFIER.findall(query)]


def column_row(name: str, data_type: str, nullable: bool, position: int) -> dict[str, Any]:
    return {
        "COLUMN_NAME": name,
        "DATA_TYPE": data_type,
        "IS_NULLABLE": "YES" if nullable else "NO",
        "COLUMN_DEFAULT": None,
        "COMMENT": None,
        "ORDINAL_POSITION": position,
    }


class FakeWarehouse:
    """Scripted stand-in for WarehouseConnection.

    The catalog is {database: {schema: {table: [(name, type, nullable), ...]}}}.
    Queries are answered by recognising the SQL the extractor emits.
    """

    def __init__(self, catalog: Optional[dict] = None):
        self.catalog: dict = catalog if catalog is not None else {}
        self.last_altered: dict[tuple[str, str, str], datetime] = {}
        self.queries: list[str] = []
        self.connect_calls = 0
        self.close_calls = 0
        self._connected = False
        self._failures: list[list[Any]] = []

    def fail(self, fragment: str, error: Exception, times: Optional[int] = None) -> None:
        """Raise `error` for queries containing `fragment` (`times` times, or always)."""
        self._failures.append([fragment, error, times])

    async def connect(self) -> None:
        self.connect_calls += 1
        self._connected = True

    async def close(self) -> None:
        self.close_calls += 1
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def execute(self, query: str) -> list[dict[str, Any]]:
        if not self._connected:
            raise ConnectionError("Not connected to Snowflake")
        self.queries.append(query)

        for failure in self._failures:
            fragment, error, remaining = failure
            if fragment in query and remaining != 0:
                if remaining is not None:
                    failure[2] = remaining - 1
                raise error

        names = _identifiers(query)
        if "SHOW DATABASES" in query:
            return [{"name": db} for db in self.catalog]
        if "SHOW SCHEMAS IN DATABASE" in query:
            schemas = list(self.catalog.get(names[0], {}))
            return [{"name": s} for s in schemas + ["INFORMATION_SCHEMA"]]
        if "SHOW TABLES IN SCHEMA" in query:
            return [{"name": t} for t in self.catalog.get(names[0], {}).get(names[1], {})]
        if "LAST_ALTERED" in query:
            return [
                {"TABLE_SCHEMA": schema, "TABLE_NAME": table, "LAST_ALTERED": altered}
                for (db, schema, table), altered in self.last_altered.items()
                if db == names[0]
            ]
        if "INFORMATION_SCHEMA.COLUMNS c" in query:
            rows = []
            for schema, tables in self.catalog.get(names[0], {}).items():
                for table, columns in tables.items():
                    for position, (name, data_type, nullable) in enumerate(columns, start=1):
                        row = column_row(name, data_type, nullable, position)
                        row.update({"TABLE_SCHEMA": schema, "TABLE_NAME": table})
                        rows.append(row)
            return rows
        if "INFORMATION_SCHEMA.COLUMNS" in query:
            schema = _SCHEMA_LITERAL.search(query).group(1).replace("''", "'")
            table = _TABLE_LITERAL.search(query).group(1).replace("''", "'")
            columns = self.catalog.get(names[0], {}).get(schema, {}).get(table, [])
            return [
                column_row(name, data_type, nullable, position)
                for position, (name, data_type, nullable) in enumerate(columns, start=1)
            ]
        raise AssertionError(f"Unexpected query: {query}")


@pytest.fixture
def fake_warehouse() -> FakeWarehouse:
    """Warehouse with one user database and the SNOWFLAKE system database."""
    return FakeWarehouse({
        "ANALYTICS": {
            "PUBLIC": {
                "USERS": [("ID", "NUMBER", False), ("NAME", "TEXT", True)],
                "ORDERS": [("ID", "NUMBER", False), ("USER_ID", "NUMBER", False)],
            },
        },
        "SNOWFLAKE": {
            "ACCOUNT_USAGE": {"QUERY_HISTORY": [("QUERY_ID", "TEXT", False)]},
        },
    })


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that returns immediately."""
    return AsyncMock()


@pytest_asyncio.fixture
async def catalog_store(tmp_path: Path) -> CatalogStore:
    store = CatalogStore(tmp_path / "catalog.db")
    await store.initialize()
    return store


@pytest.fixture
def mock_store() -> MagicMock:
    """Create a mock catalog store."""
    mock = MagicMock()
    mock.initialize = AsyncMock()
    mock.last_successful_run_end = AsyncMock(return_value=None)
    mock.plan = AsyncMock()
    mock.apply = AsyncMock()
    mock.record_run = AsyncMock()
    mock.list_runs = AsyncMock(return_value=[])
    mock.get_run = AsyncMock(return_value=None)
    return mock


def build_table(
    name: str = "USERS",
    columns: Optional[list[tuple[str, str, bool]]] = None,
    database: str = "ANALYTICS",
    schema: str = "PUBLIC",
) -> TableDescriptor:
    if columns is None:
        columns = [("ID", "NUMBER", False), ("NAME", "TEXT", True)]
    return TableDescriptor(
        database=database,
        schema=schema,
        table=name,
        columns=[
            ColumnDescriptor(name=c, data_type=t, nullable=n) for c, t, n in columns
        ],
    )


@pytest.fixture
def make_table():
    """Factory for TableDescriptor instances from (name, type, nullable) tuples."""
    return build_table


@pytest.fixture
def make_warehouse():
    """Factory for FakeWarehouse instances with a custom catalog."""
    return FakeWarehouse
