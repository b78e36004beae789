"""
Exception classes for the catalog sync pipeline.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all catalog sync errors."""

    pass


class ConfigError(SyncError):
    """Required warehouse credentials are missing."""

    pass


class ConnectionError(SyncError):
    """Warehouse session could not be established."""

    pass


class QueryError(SyncError):
    """Warehouse query failed.

    Carries the vendor error code (Snowflake errno or sqlstate) when one
    is available, so the executor can classify transient failures.
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ExtractionError(SyncError):
    """Every extraction strategy in the chain failed."""

    pass


class PersistenceError(SyncError):
    """Document store read or write failure."""

    pass


class HistoryWriteError(SyncError):
    """Sync run record could not be appended. Logged, never raised to callers."""

    pass
