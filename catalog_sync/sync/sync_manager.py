"""
Orchestration of metadata sync runs.
"""

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from catalog_sync import config
from catalog_sync.logging_config import get_logger
from catalog_sync.sync.catalog_store import CatalogStore
from catalog_sync.sync.executor import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    RetryingQueryExecutor,
)
from catalog_sync.sync.extractor import CatalogExtractor
from catalog_sync.sync.models import QueryMetrics, SyncResult, SyncRun, SyncStats
from catalog_sync.sync.warehouse import WarehouseConfig, WarehouseConnection

SUCCESS_MESSAGE = "Metadata sync completed successfully"
FAILURE_MESSAGE = "Metadata sync failed"

ExtractorFactory = Callable[[RetryingQueryExecutor, logging.Logger], CatalogExtractor]


class SyncState(str, Enum):
    """Phase of the current or most recent run. DONE and FAILED are terminal."""

    IDLE = "idle"
    EXTRACTING = "extracting"
    DIFFING = "diffing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


def _default_extractor(
    executor: RetryingQueryExecutor, logger: logging.Logger
) -> CatalogExtractor:
    return CatalogExtractor(executor, logger=logger)


class SyncOrchestrator:
    """Run one metadata sync end to end and record its outcome.

    A run reads the incremental watermark, extracts the catalog while the
    warehouse session is open, diffs it against the store, writes the
    changes and appends a run record. run_sync() always returns a
    SyncResult; failures are reported in it, never raised.
    """

    def __init__(
        self,
        warehouse: WarehouseConnection,
        store: CatalogStore,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        extractor_factory: Optional[ExtractorFactory] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize sync orchestrator.

        Args:
            warehouse: Snowflake connection, opened and closed per run
            store: Catalog and history persistence
            max_retries: Total attempts per warehouse query
            base_delay_ms: Backoff before the first retry
            sleep: Awaitable sleep used between retries
            extractor_factory: Builds the extractor for a run's executor
            logger: Optional logger instance
        """
        self._warehouse = warehouse
        self._store = store
        self._max_retries = max_retries
        self._base_delay_ms = base_delay_ms
        self._sleep = sleep
        self._extractor_factory = extractor_factory or _default_extractor
        self._logger = logger or get_logger(__name__)
        self._state = SyncState.IDLE
        self._run_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, logger: Optional[logging.Logger] = None) -> "SyncOrchestrator":
        """Build an orchestrator from catalog_sync.toml and the environment."""
        warehouse_config = WarehouseConfig.from_env(
            require_warehouse_and_role=config.get("snowflake", "require_warehouse_and_role"),
            login_timeout=config.get("snowflake", "login_timeout_seconds"),
        )
        db_path = config.get_env("CATALOG_DB_PATH") or config.get("store", "db_path")
        store = CatalogStore(
            Path(os.path.expanduser(db_path)),
            read_batch_size=config.get("store", "read_batch_size"),
            logger=logger,
        )
        return cls(
            warehouse=WarehouseConnection(warehouse_config, logger=logger),
            store=store,
            max_retries=config.get("executor", "max_retries"),
            base_delay_ms=config.get("executor", "base_delay_ms"),
            logger=logger,
        )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def store(self) -> CatalogStore:
        return self._store

    async def run_sync(self) -> SyncResult:
        """Run a sync. Overlapping calls wait for the running one to finish."""
        async with self._run_lock:
            return await self._run_sync()

    async def _run_sync(self) -> SyncResult:
        run_id = str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        metrics = QueryMetrics()
        since: Optional[datetime] = None

        self._logger.info(f"Starting metadata sync - Run ID: {run_id}")

        self._state = SyncState.EXTRACTING
        try:
            since = await self._store.last_successful_run_end()
            if since is None:
                self._logger.info("No previous successful sync found, running full extraction")
            else:
                self._logger.info(f"Incremental sync since {since.isoformat()}")

            warehouse_started = time.monotonic()
            try:
                await self._warehouse.connect()
                executor = RetryingQueryExecutor(
                    self._warehouse,
                    metrics=metrics,
                    max_retries=self._max_retries,
                    base_delay_ms=self._base_delay_ms,
                    sleep=self._sleep,
                    logger=self._logger,
                )
                extractor = self._extractor_factory(executor, self._logger)
                tables = await extractor.extract_catalog(since)
            finally:
                await self._warehouse.close()
            warehouse_ms = int((time.monotonic() - warehouse_started) * 1000)

            self._state = SyncState.DIFFING
            store_started = time.monotonic()
            change_set = await self._store.plan(tables)

            self._state = SyncState.PERSISTING
            upsert = await self._store.apply(change_set)
            store_ms = int((time.monotonic() - store_started) * 1000)

            processing_ms = int((time.monotonic() - started) * 1000)
            result = SyncResult(
                success=True,
                message=SUCCESS_MESSAGE,
                stats=SyncStats(
                    total_tables=len(tables),
                    new_tables=upsert.new_tables,
                    updated_tables=upsert.updated_tables,
                    skipped_tables=upsert.skipped_tables,
                    processing_time_ms=processing_ms,
                ),
                errors=list(upsert.write_errors),
                run_id=run_id,
                metrics=metrics,
            )

            self._logger.info(
                f"Metadata sync completed: {result.stats.total_tables} tables, "
                f"{result.stats.new_tables} new, {result.stats.updated_tables} updated, "
                f"{result.stats.skipped_tables} skipped in {processing_ms}ms",
                extra={
                    "data": {
                        "runId": run_id,
                        **result.stats.to_dict(),
                        "warehouseDurationMs": warehouse_ms,
                        "storeDurationMs": store_ms,
                        "queryMetrics": metrics.to_dict(),
                        "writeErrors": len(upsert.write_errors),
                        "incremental": since is not None,
                        "watermark": since.isoformat() if since else None,
                    }
                },
            )

        except Exception as e:
            processing_ms = int((time.monotonic() - started) * 1000)
            self._logger.error(
                f"Metadata sync failed: {e}",
                extra={
                    "data": {
                        "runId": run_id,
                        "state": self._state.value,
                        "processingTimeMs": processing_ms,
                        "queryMetrics": metrics.to_dict(),
                    }
                },
            )
            result = SyncResult(
                success=False,
                message=FAILURE_MESSAGE,
                stats=SyncStats(processing_time_ms=processing_ms),
                errors=[str(e)],
                run_id=run_id,
                metrics=metrics,
            )

        self._state = SyncState.DONE if result.success else SyncState.FAILED
        ended_at = datetime.now(timezone.utc)
        await self._store.record_run(SyncRun.from_result(run_id, result, started_at, ended_at))
        return result

    async def get_sync_history(self, limit: int = 10) -> list[SyncRun]:
        """Most recent runs, newest first."""
        return await self._store.list_runs(limit)

    async def get_sync_run(self, run_id: str) -> Optional[SyncRun]:
        return await self._store.get_run(run_id)
