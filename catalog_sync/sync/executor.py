"""
Warehouse query execution with transient-failure retries.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from catalog_sync.logging_config import get_logger
from catalog_sync.sync.models import QueryMetrics
from catalog_sync.sync.warehouse import error_code

RETRYABLE_KEYWORDS = (
    "timeout",
    "connection",
    "network",
    "temporary",
    "rate limit",
    "service unavailable",
    "connection lost",
    "query timeout",
    "warehouse suspended",
    "session expired",
)

# Snowflake errnos for dropped sessions, failed requests, expired tokens,
# cancelled or timed-out statements.
TRANSIENT_ERROR_CODES = frozenset({
    "250001",
    "250002",
    "250003",
    "390111",
    "390114",
    "000604",
    "000625",
    "000630",
})

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000


class QueryRunner(Protocol):
    async def execute(self, query: str) -> list[dict[str, Any]]: ...


def is_retryable(error: BaseException) -> bool:
    """Classify an error as transient (retry) or terminal."""
    message = str(error).lower()
    if any(keyword in message for keyword in RETRYABLE_KEYWORDS):
        return True
    return error_code(error) in TRANSIENT_ERROR_CODES


def backoff_delay_ms(attempt: int, base_delay_ms: int = DEFAULT_BASE_DELAY_MS) -> int:
    """Delay before the given 1-based attempt: 0, 1s, 2s, 4s, ..."""
    if attempt < 2:
        return 0
    return (2 ** (attempt - 2)) * base_delay_ms


class RetryingQueryExecutor:
    """Run queries against a warehouse connection, retrying transient failures."""

    def __init__(
        self,
        connection: QueryRunner,
        metrics: Optional[QueryMetrics] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize executor.

        Args:
            connection: Open warehouse connection
            metrics: Run-scoped counters to update (a fresh set when omitted)
            max_retries: Total attempts per query, including the first
            base_delay_ms: Delay before the second attempt; doubles after
            sleep: Awaitable sleep, injectable for tests
            logger: Optional logger instance
        """
        self._connection = connection
        self.metrics = metrics if metrics is not None else QueryMetrics()
        self._max_retries = max(1, max_retries)
        self._base_delay_ms = base_delay_ms
        self._sleep = sleep
        self._logger = logger or get_logger(__name__)

    async def execute(self, query: str) -> list[dict[str, Any]]:
        """Execute a query, retrying retryable failures with exponential backoff.

        Raises:
            The last underlying error, unchanged, once retries are exhausted
            or a terminal error is seen.
        """
        self.metrics.queries += 1
        query_number = self.metrics.queries
        if query_number % 10 == 0:
            self._logger.debug(f"Executing query {query_number}: {query[:100]}...")

        for attempt in range(1, self._max_retries + 1):
            if attempt > 1:
                delay_ms = backoff_delay_ms(attempt, self._base_delay_ms)
                self.metrics.retries += 1
                self._logger.warning(
                    f"Retrying query {query_number} (attempt {attempt}/{self._max_retries}) "
                    f"in {delay_ms}ms"
                )
                await self._sleep(delay_ms / 1000)

            self.metrics.attempts += 1
            started = time.monotonic()
            try:
                rows = await self._connection.execute(query)
            except Exception as e:
                self.metrics.errors += 1
                self.metrics.duration_ms += int((time.monotonic() - started) * 1000)
                if not is_retryable(e):
                    self._logger.error(f"Query {query_number} failed (non-retryable): {e}")
                    raise
                if attempt >= self._max_retries:
                    self._logger.error(
                        f"Query {query_number} failed after {attempt} attempts: {e}"
                    )
                    raise
                self._logger.warning(f"Query {query_number} failed (retryable): {e}")
                continue

            self.metrics.duration_ms += int((time.monotonic() - started) * 1000)
            self._logger.debug(f"Query {query_number} returned {len(rows)} rows")
            return rows

        # max_retries >= 1 means the loop always returns or raises
        raise AssertionError("unreachable")
