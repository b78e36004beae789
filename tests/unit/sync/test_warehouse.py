"""
Tests for Snowflake configuration and the connection adapter.
"""

from unittest.mock import MagicMock, patch

import pytest
from snowflake.connector.errors import OperationalError, ProgrammingError

from catalog_sync.sync.exceptions import ConfigError, ConnectionError, QueryError
from catalog_sync.sync.warehouse import WarehouseConfig, WarehouseConnection, error_code

CONNECT = "snowflake.connector.connect"


@pytest.fixture
def snowflake_env(monkeypatch):
    monkeypatch.setenv("SNOWFLAKE_ACCOUNT", "xy12345.eu-west-1")
    monkeypatch.setenv("SNOWFLAKE_USERNAME", "catalog_bot")
    monkeypatch.setenv("SNOWFLAKE_PASSWORD", "s3cret")
    monkeypatch.delenv("SNOWFLAKE_WAREHOUSE", raising=False)
    monkeypatch.delenv("SNOWFLAKE_ROLE", raising=False)


@pytest.fixture
def config():
    return WarehouseConfig(account="xy12345", user="catalog_bot", password="s3cret")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestWarehouseConfig:

    def test_from_env_reads_credentials(self, snowflake_env):
        config = WarehouseConfig.from_env()

        assert config.account == "xy12345.eu-west-1"
        assert config.user == "catalog_bot"
        assert config.warehouse is None
        config.validate()

    def test_missing_credentials_are_all_named(self, monkeypatch):
        for name in ("SNOWFLAKE_ACCOUNT", "SNOWFLAKE_USERNAME", "SNOWFLAKE_PASSWORD"):
            monkeypatch.delenv(name, raising=False)

        with pytest.raises(ConfigError) as exc_info:
            WarehouseConfig.from_env().validate()

        message = str(exc_info.value)
        assert "SNOWFLAKE_ACCOUNT" in message
        assert "SNOWFLAKE_USERNAME" in message
        assert "SNOWFLAKE_PASSWORD" in message

    def test_warehouse_and_role_optional_by_default(self, snowflake_env):
        assert WarehouseConfig.from_env().missing_variables() == []

    def test_warehouse_and_role_required_when_configured(self, snowflake_env):
        config = WarehouseConfig.from_env(require_warehouse_and_role=True)

        assert config.missing_variables() == ["SNOWFLAKE_WAREHOUSE", "SNOWFLAKE_ROLE"]

    def test_connect_kwargs_include_optional_settings(self, config):
        config.warehouse = "COMPUTE_WH"

        kwargs = config.connect_kwargs()

        assert kwargs["warehouse"] == "COMPUTE_WH"
        assert "role" not in kwargs
        assert kwargs["login_timeout"] == 60


class TestErrorCode:

    def test_errno_is_zero_padded(self):
        assert error_code(ProgrammingError(msg="does not exist", errno=2003)) == "002003"

    def test_falls_back_to_sqlstate(self):
        error = MagicMock(spec=["errno", "sqlstate"])
        error.errno = None
        error.sqlstate = "57014"

        assert error_code(error) == "57014"

    def test_query_error_code_takes_precedence(self):
        assert error_code(QueryError("Statement reached its timeout", code="000630")) == "000630"

    def test_none_without_code(self):
        assert error_code(Exception("plain")) is None


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class TestWarehouseConnection:

    @pytest.mark.asyncio
    async def test_missing_config_fails_before_connecting(self):
        connection = WarehouseConnection(WarehouseConfig(account="", user="", password=""))

        with patch(CONNECT) as connect:
            with pytest.raises(ConfigError):
                await connection.connect()

        connect.assert_not_called()

    @pytest.mark.asyncio
    async def test_connector_error_becomes_connection_error(self, config):
        connection = WarehouseConnection(config)

        with patch(CONNECT, side_effect=OperationalError(msg="login failed", errno=250001)):
            with pytest.raises(ConnectionError):
                await connection.connect()

        assert connection.is_connected is False

    @pytest.mark.asyncio
    async def test_execute_returns_dict_rows(self, config):
        conn = MagicMock()
        conn.cursor.return_value.fetchall.return_value = [{"name": "ANALYTICS"}]
        connection = WarehouseConnection(config)

        with patch(CONNECT, return_value=conn):
            await connection.connect()
        rows = await connection.execute("SHOW DATABASES")

        assert rows == [{"name": "ANALYTICS"}]
        conn.cursor.return_value.execute.assert_called_once_with("SHOW DATABASES")
        conn.cursor.return_value.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_query_failure_carries_vendor_code(self, config):
        conn = MagicMock()
        conn.cursor.return_value.execute.side_effect = ProgrammingError(
            msg="Object does not exist", errno=2003
        )
        connection = WarehouseConnection(config)

        with patch(CONNECT, return_value=conn):
            await connection.connect()
        with pytest.raises(QueryError) as exc_info:
            await connection.execute("SELECT 1")

        assert exc_info.value.code == "002003"

    @pytest.mark.asyncio
    async def test_execute_requires_connection(self, config):
        with pytest.raises(ConnectionError):
            await WarehouseConnection(config).execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, config):
        conn = MagicMock()
        connection = WarehouseConnection(config)

        with patch(CONNECT, return_value=conn):
            await connection.connect()
        await connection.close()
        await connection.close()

        conn.close.assert_called_once()
        assert connection.is_connected is False
