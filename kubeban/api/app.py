"""FastAPI application factory for KubeBan.

Usage::

    from kubeban.api.app import create_app

    app = create_app(orchestrator=orchestrator, source=source, config=config)

The factory is used by both the production bootstrap (``kubeban.app``)
and unit tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from kubeban.api.routes import router
from kubeban.api.schemas import ErrorResponse

_log = structlog.get_logger(component="api.app")

_API_PREFIX = "/api/v1"


def create_app(
    orchestrator: Any,
    source: Any = None,
    config: Any = None,
) -> FastAPI:
    """Create and configure the KubeBan status API.

    Args:
        orchestrator: FanOutOrchestrator whose state and last report are served.
        source:       RedisEventSource used for readiness.
        config:       KubeBanConfig.

    Returns:
        Configured FastAPI application, ready to be served by uvicorn.
    """
    from kubeban import __version__
    from kubeban.models.config import KubeBanConfig

    app = FastAPI(
        title="KubeBan",
        summary="Varnish cache invalidation broadcaster",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url=None,
        openapi_url="/api/v1/openapi.json",
    )

    app.state.orchestrator = orchestrator
    app.state.source = source
    app.state.config = config or KubeBanConfig()

    app.include_router(router, prefix=_API_PREFIX)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                detail="An unexpected error occurred.",
            ).model_dump(),
        )

    return app
