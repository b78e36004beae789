"""
ASGI middleware for correlation ID propagation and request error boundaries.

Every sync triggered over HTTP runs under the correlation ID of its request,
so the extraction and persistence log lines of one run can be grouped.
"""

import traceback

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import JSONResponse

from catalog_sync.logging_config import (
    CORRELATION_HEADER,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    is_production,
    set_correlation_id,
)

logger = get_logger("middleware")


class CorrelationIdMiddleware:
    """Reads or generates x-correlation-id and echoes it on the response."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        cid = Headers(scope=scope).get(CORRELATION_HEADER) or generate_correlation_id()
        set_correlation_id(cid)

        async def send_with_correlation(message):
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[CORRELATION_HEADER] = cid
            await send(message)

        await self.app(scope, receive, send_with_correlation)


class ErrorBoundaryMiddleware:
    """Turns an unhandled exception into a JSON 500 carrying the correlation ID.

    Sync runs never reach this boundary, since the orchestrator returns
    failures as results. It covers the history read endpoints. Outside
    production the body also carries the error text and stack trace.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            cid = get_correlation_id()
            logger.error(f"Unhandled exception on {scope.get('path')}: {exc}", exc_info=True)

            payload = {"error": "Internal server error", "correlationId": cid}
            if not is_production():
                payload["error"] = str(exc)
                payload["stackTrace"] = traceback.format_exc()

            response = JSONResponse(
                payload, status_code=500, headers={CORRELATION_HEADER: cid}
            )
            await response(scope, receive, send)
