"""
Catalog and sync-history persistence in a SQLite document store.

Two collections are kept as tables: `metadata` holds one catalog document
per (database, schema, table) with its columns as JSON, and `sync_stats`
holds one append-only document per sync attempt.
"""

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

import aiosqlite

from catalog_sync.logging_config import get_logger
from catalog_sync.sync.change_detector import ChangeDetector, ChangeSet
from catalog_sync.sync.exceptions import HistoryWriteError, PersistenceError
from catalog_sync.sync.models import (
    CatalogRecord,
    ColumnDescriptor,
    SyncRun,
    TableDescriptor,
    UpsertResult,
)

DEFAULT_READ_BATCH_SIZE = 500


def _to_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str) -> datetime:
    return datetime.fromisoformat(value)


class CatalogStore:
    """Persist catalog records and sync runs in SQLite."""

    def __init__(
        self,
        db_path: Path,
        change_detector: Optional[ChangeDetector] = None,
        read_batch_size: int = DEFAULT_READ_BATCH_SIZE,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize catalog store.

        Args:
            db_path: Path to SQLite database file
            change_detector: Classifier used to diff incoming tables
            read_batch_size: Tables per existence lookup query
            logger: Optional logger instance
        """
        self._db_path = Path(db_path)
        self._detector = change_detector or ChangeDetector()
        self._read_batch_size = max(1, read_batch_size)
        self._logger = logger or get_logger(__name__)

    async def initialize(self) -> None:
        """Create both collections and their indexes if missing."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS metadata (
                    database_name TEXT NOT NULL,
                    schema_name TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    columns TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    last_synced TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await db.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS idx_metadata_identity
                ON metadata (database_name, schema_name, table_name)
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_stats (
                    id TEXT PRIMARY KEY,
                    sync_start_time TEXT NOT NULL,
                    sync_end_time TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    total_tables INTEGER DEFAULT 0,
                    new_tables INTEGER DEFAULT 0,
                    updated_tables INTEGER DEFAULT 0,
                    skipped_tables INTEGER DEFAULT 0,
                    processing_time_ms INTEGER NOT NULL,
                    errors TEXT NOT NULL DEFAULT '[]',
                    message TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_stats_end "
                "ON sync_stats (sync_end_time DESC)"
            )
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_stats_success_end "
                "ON sync_stats (success, sync_end_time DESC)"
            )
            await db.commit()
        self._logger.info(f"Catalog store initialized at {self._db_path}")

    # ------------------------------------------------------------------
    # Catalog records
    # ------------------------------------------------------------------

    async def upsert(self, tables: Sequence[TableDescriptor]) -> UpsertResult:
        """Diff tables against stored records and write new and changed ones.

        Returns:
            Counts with new + updated + skipped == len(tables)
        """
        if not tables:
            self._logger.info("No tables to upsert")
            return UpsertResult()

        change_set = await self.plan(tables)
        return await self.apply(change_set)

    async def plan(self, tables: Sequence[TableDescriptor]) -> ChangeSet:
        """Fetch stored records for the input keys and classify every table."""
        if not tables:
            return ChangeSet()

        try:
            existing = await self._fetch_existing(tables)
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to read existing catalog records: {e}") from e

        change_set = self._detector.detect(tables, existing)
        self._logger.info(
            f"Classified {change_set.total} tables: {len(change_set.inserts)} new, "
            f"{len(change_set.updates)} changed, {len(change_set.unchanged)} unchanged"
        )
        return change_set

    async def apply(self, change_set: ChangeSet) -> UpsertResult:
        """Execute inserts and updates as one unordered bulk write.

        A document that fails its write is logged and reported in
        write_errors without blocking the others; it counts as skipped.
        """
        total = change_set.total
        if change_set.writes == 0:
            self._logger.info(f"All {total} tables were unchanged - no operations needed")
            return UpsertResult(skipped_tables=total)

        started = time.monotonic()
        now = _to_text(datetime.now(timezone.utc))
        inserted = 0
        modified = 0
        write_errors: list[str] = []

        self._logger.info(f"Executing {change_set.writes} bulk operations")
        try:
            async with aiosqlite.connect(self._db_path) as db:
                for change in change_set.inserts:
                    table = change.table
                    try:
                        await db.execute(
                            """
                            INSERT INTO metadata (
                                database_name, schema_name, table_name, columns,
                                checksum, last_synced, created_at, updated_at
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                table.database,
                                table.schema,
                                table.table,
                                self._columns_json(table.columns),
                                change.fingerprint,
                                now,
                                now,
                                now,
                            ),
                        )
                        inserted += 1
                    except aiosqlite.IntegrityError as e:
                        write_errors.append(f"{table.full_name}: {e}")
                        self._logger.warning(f"Failed to insert {table.full_name}: {e}")

                for change in change_set.updates:
                    table = change.table
                    try:
                        cursor = await db.execute(
                            """
                            UPDATE metadata
                            SET columns = ?, checksum = ?, last_synced = ?, updated_at = ?
                            WHERE database_name = ? AND schema_name = ? AND table_name = ?
                            """,
                            (
                                self._columns_json(table.columns),
                                change.fingerprint,
                                now,
                                now,
                                table.database,
                                table.schema,
                                table.table,
                            ),
                        )
                        modified += max(cursor.rowcount, 0)
                    except aiosqlite.IntegrityError as e:
                        write_errors.append(f"{table.full_name}: {e}")
                        self._logger.warning(f"Failed to update {table.full_name}: {e}")

                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            self._logger.error(f"Catalog bulk write failed: {e}")
            raise PersistenceError(f"Catalog bulk write failed: {e}") from e

        result = UpsertResult(
            new_tables=inserted,
            updated_tables=modified,
            skipped_tables=total - inserted - modified,
            write_errors=write_errors,
        )
        duration_ms = int((time.monotonic() - started) * 1000)
        self._logger.info(
            f"Bulk operations completed: {result.new_tables} inserted, "
            f"{result.updated_tables} updated, {result.skipped_tables} skipped",
            extra={
                "data": {
                    "tablesProcessed": total,
                    "bulkOpsCount": change_set.writes,
                    "writeErrors": len(write_errors),
                    "durationMs": duration_ms,
                }
            },
        )
        return result

    async def get_record(
        self, database: str, schema: str, table: str
    ) -> Optional[CatalogRecord]:
        """Stored catalog record for one table."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    """
                    SELECT * FROM metadata
                    WHERE database_name = ? AND schema_name = ? AND table_name = ?
                    """,
                    (database, schema, table),
                ) as cursor:
                    row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to read catalog record: {e}") from e
        return self._row_to_record(row) if row is not None else None

    async def _fetch_existing(
        self, tables: Sequence[TableDescriptor]
    ) -> dict[tuple[str, str, str], CatalogRecord]:
        existing: dict[tuple[str, str, str], CatalogRecord] = {}
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            for start in range(0, len(tables), self._read_batch_size):
                batch = tables[start:start + self._read_batch_size]
                predicate = " OR ".join(
                    ["(database_name = ? AND schema_name = ? AND table_name = ?)"] * len(batch)
                )
                params = [part for table in batch for part in table.key]
                async with db.execute(
                    f"SELECT * FROM metadata WHERE {predicate}", params
                ) as cursor:
                    for row in await cursor.fetchall():
                        record = self._row_to_record(row)
                        existing[record.key] = record
        return existing

    @staticmethod
    def _columns_json(columns: Sequence[ColumnDescriptor]) -> str:
        return json.dumps([c.to_document() for c in columns])

    def _row_to_record(self, row: aiosqlite.Row) -> CatalogRecord:
        return CatalogRecord(
            database=row["database_name"],
            schema=row["schema_name"],
            table=row["table_name"],
            columns=[ColumnDescriptor.from_document(c) for c in json.loads(row["columns"])],
            fingerprint=row["checksum"],
            last_synced=_from_text(row["last_synced"]),
        )

    # ------------------------------------------------------------------
    # Sync history
    # ------------------------------------------------------------------

    async def record_run(self, run: SyncRun) -> None:
        """Append a run record. Failures are logged and never raised."""
        try:
            await self._insert_run(run)
        except HistoryWriteError as e:
            self._logger.error(str(e))
            return
        self._logger.info(f"Sync run {run.run_id} saved")

    async def _insert_run(self, run: SyncRun) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    """
                    INSERT INTO sync_stats (
                        id, sync_start_time, sync_end_time, success,
                        total_tables, new_tables, updated_tables, skipped_tables,
                        processing_time_ms, errors, message, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run.run_id,
                        _to_text(run.sync_start_time),
                        _to_text(run.sync_end_time),
                        1 if run.success else 0,
                        run.total_tables,
                        run.new_tables,
                        run.updated_tables,
                        run.skipped_tables,
                        run.processing_time_ms,
                        json.dumps(run.errors),
                        run.message,
                        _to_text(datetime.now(timezone.utc)),
                    ),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            raise HistoryWriteError(f"Failed to save sync run {run.run_id}: {e}") from e

    async def last_successful_run_end(self) -> Optional[datetime]:
        """End time of the most recent successful run, the incremental watermark."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute(
                    """
                    SELECT sync_end_time FROM sync_stats
                    WHERE success = 1
                    ORDER BY sync_end_time DESC
                    LIMIT 1
                    """
                ) as cursor:
                    row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to read last sync time: {e}") from e
        return _from_text(row[0]) if row is not None else None

    async def list_runs(self, limit: int = 10) -> list[SyncRun]:
        """Most recent runs, newest first."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    "SELECT * FROM sync_stats ORDER BY sync_end_time DESC LIMIT ?",
                    (max(0, limit),),
                ) as cursor:
                    rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to retrieve sync history: {e}") from e
        return [self._row_to_run(row) for row in rows]

    async def get_run(self, run_id: str) -> Optional[SyncRun]:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(
                    "SELECT * FROM sync_stats WHERE id = ?", (run_id,)
                ) as cursor:
                    row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise PersistenceError(f"Failed to retrieve sync run {run_id}: {e}") from e
        return self._row_to_run(row) if row is not None else None

    def _row_to_run(self, row: aiosqlite.Row) -> SyncRun:
        return SyncRun(
            run_id=row["id"],
            sync_start_time=_from_text(row["sync_start_time"]),
            sync_end_time=_from_text(row["sync_end_time"]),
            success=bool(row["success"]),
            total_tables=row["total_tables"] or 0,
            new_tables=row["new_tables"] or 0,
            updated_tables=row["updated_tables"] or 0,
            skipped_tables=row["skipped_tables"] or 0,
            processing_time_ms=row["processing_time_ms"] or 0,
            errors=json.loads(row["errors"] or "[]"),
            message=row["message"] or "",
        )
