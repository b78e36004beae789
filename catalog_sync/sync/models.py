"""
Catalog and sync-run data model.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class ColumnDescriptor:
    """One warehouse column, in ordinal position within its table."""

    name: str
    data_type: str
    nullable: bool
    default_value: Optional[str] = None
    comment: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        """Stored and hashed form of the column."""
        return {
            "name": self.name,
            "type": self.data_type,
            "nullable": self.nullable,
            "defaultValue": self.default_value,
            "comment": self.comment,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "ColumnDescriptor":
        return cls(
            name=doc["name"],
            data_type=doc["type"],
            nullable=bool(doc["nullable"]),
            default_value=doc.get("defaultValue"),
            comment=doc.get("comment"),
        )


@dataclass
class TableDescriptor:
    """A warehouse table and its ordered columns.

    `key` keeps the warehouse-native casing for round-tripping to Snowflake
    and identifies the stored record; `comparison_key` is the upper-cased
    form used when matching names reported back by INFORMATION_SCHEMA.
    """

    database: str
    schema: str
    table: str
    columns: list[ColumnDescriptor] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.database, self.schema, self.table)

    @property
    def comparison_key(self) -> tuple[str, str, str]:
        return (self.database.upper(), self.schema.upper(), self.table.upper())

    @property
    def full_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.table}"


@dataclass
class CatalogRecord:
    """Persisted catalog document, unique by (database, schema, table)."""

    database: str
    schema: str
    table: str
    columns: list[ColumnDescriptor]
    fingerprint: str
    last_synced: datetime

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.database, self.schema, self.table)


@dataclass
class QueryMetrics:
    """Per-run warehouse query counters.

    Created fresh for every sync and threaded through the executor, so
    concurrent runs never share counters.
    """

    queries: int = 0
    attempts: int = 0
    retries: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "queries": self.queries,
            "attempts": self.attempts,
            "retries": self.retries,
            "errors": self.errors,
            "durationMs": self.duration_ms,
        }


@dataclass
class UpsertResult:
    """Outcome of one diff-and-persist pass."""

    new_tables: int = 0
    updated_tables: int = 0
    skipped_tables: int = 0
    write_errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.new_tables + self.updated_tables + self.skipped_tables


@dataclass
class SyncStats:
    """Aggregate counts reported for one sync."""

    total_tables: int = 0
    new_tables: int = 0
    updated_tables: int = 0
    skipped_tables: int = 0
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalTables": self.total_tables,
            "newTables": self.new_tables,
            "updatedTables": self.updated_tables,
            "skippedTables": self.skipped_tables,
            "processingTimeMs": self.processing_time_ms,
        }


@dataclass
class SyncResult:
    """Externally visible result of a sync. Always a value, never raised."""

    success: bool
    message: str
    stats: SyncStats
    errors: list[str] = field(default_factory=list)
    run_id: Optional[str] = None
    metrics: QueryMetrics = field(default_factory=QueryMetrics)

    def to_response(self) -> dict[str, Any]:
        """JSON shape returned by the trigger surface."""
        body: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "stats": self.stats.to_dict(),
        }
        if self.errors:
            body["errors"] = list(self.errors)
        return body


@dataclass(frozen=True)
class SyncRun:
    """Immutable record of one sync attempt."""

    run_id: str
    sync_start_time: datetime
    sync_end_time: datetime
    success: bool
    total_tables: int
    new_tables: int
    updated_tables: int
    skipped_tables: int
    processing_time_ms: int
    errors: list[str] = field(default_factory=list)
    message: str = ""

    @classmethod
    def from_result(
        cls,
        run_id: str,
        result: SyncResult,
        started_at: datetime,
        ended_at: datetime,
    ) -> "SyncRun":
        return cls(
            run_id=run_id,
            sync_start_time=started_at,
            sync_end_time=ended_at,
            success=result.success,
            total_tables=result.stats.total_tables,
            new_tables=result.stats.new_tables,
            updated_tables=result.stats.updated_tables,
            skipped_tables=result.stats.skipped_tables,
            processing_time_ms=result.stats.processing_time_ms,
            errors=list(result.errors),
            message=result.message,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.run_id,
            "syncStartTime": self.sync_start_time.isoformat(),
            "syncEndTime": self.sync_end_time.isoformat(),
            "success": self.success,
            "totalTables": self.total_tables,
            "newTables": self.new_tables,
            "updatedTables": self.updated_tables,
            "skippedTables": self.skipped_tables,
            "processingTimeMs": self.processing_time_ms,
            "errors": list(self.errors),
            "message": self.message,
        }
