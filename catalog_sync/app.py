"""
HTTP trigger surface for the catalog sync service.

Endpoints:
- POST /metadata/sync                  run a sync now
- GET  /metadata/sync/history?limit=N  recent runs, newest first
- GET  /metadata/sync/stats/{run_id}   one run
- GET  /health                         liveness
"""

import contextlib
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from catalog_sync.config import get
from catalog_sync.logging_config import configure_logging, get_logger
from catalog_sync.middleware import CorrelationIdMiddleware, ErrorBoundaryMiddleware
from catalog_sync.sync.sync_manager import SyncOrchestrator

logger = get_logger("app")

DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 1000


# =============================================================================
# Route handlers
# =============================================================================

async def trigger_sync(request: Request) -> JSONResponse:
    """Run a sync and return its result. Failed syncs are still HTTP 200."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    logger.info("Metadata sync triggered over HTTP")
    result = await orchestrator.run_sync()

    body = result.to_response()
    body["runId"] = result.run_id
    return JSONResponse(body)


async def sync_history(request: Request) -> JSONResponse:
    raw_limit = request.query_params.get("limit")
    limit = request.app.state.history_limit
    if raw_limit is not None:
        try:
            limit = int(raw_limit)
        except ValueError:
            return JSONResponse(
                {"error": f"Invalid limit: {raw_limit!r}"}, status_code=400
            )
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            return JSONResponse(
                {"error": f"limit must be between 1 and {MAX_HISTORY_LIMIT}"},
                status_code=400,
            )

    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    runs = await orchestrator.get_sync_history(limit)
    return JSONResponse([run.to_dict() for run in runs])


async def sync_stats(request: Request) -> JSONResponse:
    run_id = request.path_params["run_id"]
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    run = await orchestrator.get_sync_run(run_id)
    if run is None:
        return JSONResponse({"error": f"Sync run not found: {run_id}"}, status_code=404)
    return JSONResponse(run.to_dict())


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


# =============================================================================
# Application factory
# =============================================================================

def create_app(
    orchestrator: Optional[SyncOrchestrator] = None,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> Starlette:
    """Build the ASGI app. Without an orchestrator one is built from config."""
    if orchestrator is None:
        orchestrator = SyncOrchestrator.from_config()
        history_limit = get("sync", "history_limit")

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await orchestrator.store.initialize()
        logger.info("Catalog sync service started")
        yield
        logger.info("Catalog sync service stopped")

    routes = [
        Route("/metadata/sync", trigger_sync, methods=["POST"]),
        Route("/metadata/sync/history", sync_history, methods=["GET"]),
        Route("/metadata/sync/stats/{run_id}", sync_stats, methods=["GET"]),
        Route("/health", health, methods=["GET"]),
    ]

    middleware = [
        Middleware(CorrelationIdMiddleware),
        Middleware(ErrorBoundaryMiddleware),
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        middleware=middleware,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.history_limit = history_limit
    return app


def main() -> None:
    configure_logging(log_level=get("app", "log_level"), service="catalog_sync")
    logger.info("Starting catalog sync HTTP service")
    uvicorn.run(
        "catalog_sync.app:create_app",
        factory=True,
        host=get("app", "host"),
        port=get("app", "port"),
    )


if __name__ == "__main__":
    main()
