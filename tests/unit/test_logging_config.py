"""
Tests for centralized logging.
"""

import json
import logging
from datetime import datetime, timedelta

import pytest

from catalog_sync.logging_config import (
    LOG_RETENTION_HOURS,
    RetentionFileHandler,
    StructuredJsonFormatter,
    configure_logging,
    set_correlation_id,
)


def _record(message, **attributes):
    record = logging.LogRecord(
        "catalog_sync.sync", logging.WARNING, __file__, 1, message, None, None
    )
    for name, value in attributes.items():
        setattr(record, name, value)
    return record


@pytest.fixture
def no_log_dir(monkeypatch):
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    yield
    configure_logging()


# ---------------------------------------------------------------------------
# File retention
# ---------------------------------------------------------------------------

class TestRetentionFileHandler:

    def test_rotates_hourly_and_keeps_retention_window(self, tmp_path):
        handler = RetentionFileHandler(tmp_path)
        try:
            assert handler.when == "H"
            assert handler.interval == 3600
            assert handler.backupCount == LOG_RETENTION_HOURS
            assert handler.log_file == tmp_path / "sync.log"
        finally:
            handler.close()

    def test_rollover_deletes_logs_older_than_window(self, tmp_path):
        start = datetime(2024, 1, 1)
        for hour in range(LOG_RETENTION_HOURS + 2):
            stamp = (start + timedelta(hours=hour)).strftime("%Y-%m-%d_%H")
            (tmp_path / f"sync.log.{stamp}").write_text("{}\n")

        handler = RetentionFileHandler(tmp_path)
        handler.setFormatter(StructuredJsonFormatter())
        try:
            handler.emit(_record("Metadata sync completed"))
            handler.doRollover()
        finally:
            handler.close()

        assert len(list(tmp_path.glob("sync.log.*"))) == LOG_RETENTION_HOURS
        assert not (tmp_path / "sync.log.2024-01-01_00").exists()
        assert not (tmp_path / "sync.log.2024-01-01_02").exists()
        assert (tmp_path / "sync.log.2024-01-01_03").exists()
        assert (tmp_path / "sync.log").exists()


class TestConfigureLogging:

    def test_log_dir_attaches_retention_handler(self, tmp_path, no_log_dir):
        configure_logging(log_dir=tmp_path)

        handlers = logging.getLogger("catalog_sync").handlers
        file_handlers = [h for h in handlers if isinstance(h, RetentionFileHandler)]
        assert len(file_handlers) == 1
        assert isinstance(file_handlers[0].formatter, StructuredJsonFormatter)

    def test_reconfiguring_closes_previous_file_handler(self, tmp_path, no_log_dir):
        configure_logging(log_dir=tmp_path)
        handler = next(
            h for h in logging.getLogger("catalog_sync").handlers
            if isinstance(h, RetentionFileHandler)
        )

        configure_logging()

        assert handler.stream is None
        assert not any(
            isinstance(h, RetentionFileHandler)
            for h in logging.getLogger("catalog_sync").handlers
        )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

class TestStructuredJsonFormatter:

    def test_entry_carries_correlation_id_and_data(self):
        set_correlation_id("req-9")
        try:
            line = StructuredJsonFormatter().format(
                _record("Metadata sync completed", data={"runId": "run-1", "newTables": 2})
            )
        finally:
            set_correlation_id("")

        entry = json.loads(line)
        assert entry["level"] == "warn"
        assert entry["context"] == "catalog_sync.sync"
        assert entry["correlationId"] == "req-9"
        assert entry["data"] == {"runId": "run-1", "newTables": 2}

    def test_password_from_environment_is_redacted(self, monkeypatch):
        monkeypatch.setenv("SNOWFLAKE_PASSWORD", "hunter2-warehouse")

        line = StructuredJsonFormatter().format(
            _record("Failed to connect: bad credentials hunter2-warehouse")
        )

        assert "hunter2-warehouse" not in line
        assert "[REDACTED]" in json.loads(line)["message"]

    def test_password_assignment_is_redacted(self):
        line = StructuredJsonFormatter().format(_record("connect(password='s3cr3t!')"))

        assert "s3cr3t" not in line
