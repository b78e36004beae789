"""
Tests for the HTTP trigger surface.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.testclient import TestClient

from catalog_sync.app import create_app
from catalog_sync.sync.exceptions import PersistenceError
from catalog_sync.sync.models import QueryMetrics, SyncResult, SyncRun, SyncStats

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _run(run_id="run-1"):
    return SyncRun(
        run_id=run_id,
        sync_start_time=T0,
        sync_end_time=T0,
        success=True,
        total_tables=4,
        new_tables=1,
        updated_tables=1,
        skipped_tables=2,
        processing_time_ms=1200,
        message="Metadata sync completed successfully",
    )


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.store.initialize = AsyncMock()
    mock.run_sync = AsyncMock(return_value=SyncResult(
        success=True,
        message="Metadata sync completed successfully",
        stats=SyncStats(total_tables=4, new_tables=1, updated_tables=1, skipped_tables=2,
                        processing_time_ms=1200),
        run_id="run-1",
        metrics=QueryMetrics(),
    ))
    mock.get_sync_history = AsyncMock(return_value=[_run()])
    mock.get_sync_run = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def client(orchestrator):
    with TestClient(create_app(orchestrator=orchestrator)) as test_client:
        yield test_client


class TestTriggerSync:

    def test_returns_result_shape(self, client):
        response = client.post("/metadata/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Metadata sync completed successfully"
        assert body["stats"] == {
            "totalTables": 4,
            "newTables": 1,
            "updatedTables": 1,
            "skippedTables": 2,
            "processingTimeMs": 1200,
        }
        assert "errors" not in body
        assert body["runId"] == "run-1"

    def test_failed_sync_is_still_200(self, client, orchestrator):
        orchestrator.run_sync.return_value = SyncResult(
            success=False,
            message="Metadata sync failed",
            stats=SyncStats(processing_time_ms=15),
            errors=["Missing required Snowflake environment variables: SNOWFLAKE_PASSWORD"],
            run_id="run-2",
        )

        response = client.post("/metadata/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["errors"] == [
            "Missing required Snowflake environment variables: SNOWFLAKE_PASSWORD"
        ]
        assert body["stats"]["totalTables"] == 0

    def test_initializes_store_on_startup(self, client, orchestrator):
        orchestrator.store.initialize.assert_awaited_once()


class TestHistory:

    def test_default_limit(self, client, orchestrator):
        response = client.get("/metadata/sync/history")

        assert response.status_code == 200
        body = response.json()
        assert isinstance(body, list)
        assert [run["id"] for run in body] == ["run-1"]
        assert body[0]["skippedTables"] == 2
        orchestrator.get_sync_history.assert_awaited_once_with(10)

    def test_empty_history_is_empty_list(self, client, orchestrator):
        orchestrator.get_sync_history.return_value = []

        response = client.get("/metadata/sync/history")

        assert response.status_code == 200
        assert response.json() == []

    def test_explicit_limit(self, client, orchestrator):
        client.get("/metadata/sync/history?limit=3")

        orchestrator.get_sync_history.assert_awaited_once_with(3)

    @pytest.mark.parametrize("limit", ["abc", "0", "-5"])
    def test_invalid_limit(self, client, orchestrator, limit):
        response = client.get(f"/metadata/sync/history?limit={limit}")

        assert response.status_code == 400
        orchestrator.get_sync_history.assert_not_awaited()

    def test_store_failure_is_sanitized_500(self, client, orchestrator):
        orchestrator.get_sync_history.side_effect = PersistenceError("database is locked")

        response = client.get(
            "/metadata/sync/history", headers={"x-correlation-id": "req-42"}
        )

        assert response.status_code == 500
        assert response.json()["correlationId"] == "req-42"
        assert response.headers["x-correlation-id"] == "req-42"


class TestStats:

    def test_known_run(self, client, orchestrator):
        orchestrator.get_sync_run.return_value = _run("run-7")

        response = client.get("/metadata/sync/stats/run-7")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "run-7"
        assert body["syncEndTime"] == T0.isoformat()
        orchestrator.get_sync_run.assert_awaited_once_with("run-7")

    def test_unknown_run_is_404(self, client):
        response = client.get("/metadata/sync/stats/missing")

        assert response.status_code == 404


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"x-correlation-id": "abc-123"})

        assert response.headers["x-correlation-id"] == "abc-123"

    def test_correlation_id_is_generated(self, client):
        response = client.get("/health")

        assert response.headers["x-correlation-id"]
