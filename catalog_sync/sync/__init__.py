"""
Snowflake Catalog Sync Module

Incremental synchronization of warehouse table and column metadata into a
local document store.
"""

from catalog_sync.sync.exceptions import (
    SyncError,
    ConfigError,
    ConnectionError,
    QueryError,
    ExtractionError,
    PersistenceError,
    HistoryWriteError,
)
from catalog_sync.sync.models import (
    ColumnDescriptor,
    TableDescriptor,
    CatalogRecord,
    QueryMetrics,
    UpsertResult,
    SyncStats,
    SyncResult,
    SyncRun,
)
from catalog_sync.sync.warehouse import WarehouseConfig, WarehouseConnection
from catalog_sync.sync.executor import RetryingQueryExecutor, is_retryable
from catalog_sync.sync.extractor import (
    CatalogExtractor,
    ExtractionStrategy,
    OptimizedExtraction,
    SimpleExtraction,
)
from catalog_sync.sync.incremental import IncrementalFilter
from catalog_sync.sync.change_detector import (
    ChangeDetector,
    ChangeKind,
    Change,
    ChangeSet,
)
from catalog_sync.sync.catalog_store import CatalogStore
from catalog_sync.sync.sync_manager import SyncOrchestrator, SyncState

__all__ = [
    # Exceptions
    "SyncError",
    "ConfigError",
    "ConnectionError",
    "QueryError",
    "ExtractionError",
    "PersistenceError",
    "HistoryWriteError",
    # Models
    "ColumnDescriptor",
    "TableDescriptor",
    "CatalogRecord",
    "QueryMetrics",
    "UpsertResult",
    "SyncStats",
    "SyncResult",
    "SyncRun",
    # Warehouse
    "WarehouseConfig",
    "WarehouseConnection",
    "RetryingQueryExecutor",
    "is_retryable",
    # Extraction
    "CatalogExtractor",
    "ExtractionStrategy",
    "OptimizedExtraction",
    "SimpleExtraction",
    "IncrementalFilter",
    # Change Detection
    "ChangeDetector",
    "ChangeKind",
    "Change",
    "ChangeSet",
    # Persistence
    "CatalogStore",
    # Orchestration
    "SyncOrchestrator",
    "SyncState",
]
