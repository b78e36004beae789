"""
Snowflake warehouse connection management using snowflake-connector-python.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import snowflake.connector
from snowflake.connector import DictCursor
from snowflake.connector.errors import Error as SnowflakeError

from catalog_sync.config import get_env
from catalog_sync.logging_config import get_logger
from catalog_sync.sync.exceptions import ConfigError, ConnectionError, QueryError


@dataclass
class WarehouseConfig:
    """Warehouse connection configuration."""

    account: str
    user: str
    password: str
    warehouse: Optional[str] = None
    role: Optional[str] = None
    login_timeout: int = 60
    require_warehouse_and_role: bool = False

    @classmethod
    def from_env(
        cls,
        require_warehouse_and_role: bool = False,
        login_timeout: int = 60,
    ) -> "WarehouseConfig":
        """Build config from SNOWFLAKE_* environment variables.

        Missing values are not rejected here; validate() runs before every
        connection attempt so a misconfigured run is reported as a failed
        sync rather than a startup crash.
        """
        return cls(
            account=get_env("SNOWFLAKE_ACCOUNT") or "",
            user=get_env("SNOWFLAKE_USERNAME") or "",
            password=get_env("SNOWFLAKE_PASSWORD") or "",
            warehouse=get_env("SNOWFLAKE_WAREHOUSE") or None,
            role=get_env("SNOWFLAKE_ROLE") or None,
            login_timeout=login_timeout,
            require_warehouse_and_role=require_warehouse_and_role,
        )

    def missing_variables(self) -> list[str]:
        """Names of required environment variables with no value."""
        required = {
            "SNOWFLAKE_ACCOUNT": self.account,
            "SNOWFLAKE_USERNAME": self.user,
            "SNOWFLAKE_PASSWORD": self.password,
        }
        if self.require_warehouse_and_role:
            required["SNOWFLAKE_WAREHOUSE"] = self.warehouse
            required["SNOWFLAKE_ROLE"] = self.role
        return [name for name, value in required.items() if not value]

    def validate(self) -> None:
        missing = self.missing_variables()
        if missing:
            raise ConfigError(
                f"Missing required Snowflake environment variables: {', '.join(missing)}"
            )

    def connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "account": self.account,
            "user": self.user,
            "password": self.password,
            "login_timeout": self.login_timeout,
        }
        if self.warehouse:
            kwargs["warehouse"] = self.warehouse
        if self.role:
            kwargs["role"] = self.role
        return kwargs


def error_code(error: BaseException) -> Optional[str]:
    """Vendor error code of an error, zero-padded like Snowflake prints it.

    Checks QueryError.code, then the connector's errno, then sqlstate.
    """
    code = getattr(error, "code", None)
    if code:
        return str(code)
    errno = getattr(error, "errno", None)
    if isinstance(errno, int) and errno > 0:
        return f"{errno:06d}"
    sqlstate = getattr(error, "sqlstate", None)
    return sqlstate or None


class WarehouseConnection:
    """Async wrapper around a single blocking Snowflake connection.

    Connector calls run in worker threads. The lock keeps one query in
    flight at a time, since a connection is not safe for concurrent use.
    """

    def __init__(self, config: WarehouseConfig, logger: Optional[logging.Logger] = None):
        self._config = config
        self._conn: Any = None
        self._lock = asyncio.Lock()
        self._queries_executed = 0
        self._logger = logger or get_logger(__name__)

    async def connect(self) -> None:
        """Open the session. Raises ConfigError before any network attempt."""
        if self._conn is not None:
            return

        self._config.validate()

        try:
            self._conn = await asyncio.to_thread(
                snowflake.connector.connect, **self._config.connect_kwargs()
            )
        except SnowflakeError as e:
            self._logger.error(f"Failed to connect to Snowflake: {e}")
            raise ConnectionError(f"Failed to connect to Snowflake: {e}") from e

        self._queries_executed = 0
        self._logger.info(f"Connected to Snowflake account {self._config.account}")

    async def close(self) -> None:
        """Close the session. Safe to call when not connected."""
        if self._conn is None:
            self._logger.warning("No Snowflake connection to disconnect")
            return

        conn, self._conn = self._conn, None
        try:
            await asyncio.to_thread(conn.close)
        except SnowflakeError as e:
            self._logger.warning(f"Error while closing Snowflake connection: {e}")
        self._logger.info(
            f"Disconnected from Snowflake. Total queries executed: {self._queries_executed}"
        )

    async def execute(self, query: str) -> list[dict[str, Any]]:
        """Execute a query and return rows as dicts."""
        if self._conn is None:
            raise ConnectionError("Not connected to Snowflake")

        async with self._lock:
            self._queries_executed += 1
            try:
                return await asyncio.to_thread(self._fetch_all, query)
            except SnowflakeError as e:
                raise QueryError(str(e), code=error_code(e)) from e

    def _fetch_all(self, query: str) -> list[dict[str, Any]]:
        cursor = self._conn.cursor(DictCursor)
        try:
            cursor.execute(query)
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    @property
    def is_connected(self) -> bool:
        return self._conn is not None
