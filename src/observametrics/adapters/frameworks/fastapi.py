"""FastAPI adapter for metrics instrumentation."""

import logging
from typing import Any

from fastapi import APIRouter, FastAPI, Response
from fastapi.responses import JSONResponse

from observametrics.adapters.frameworks.asgi import ASGIMetricsMiddleware
from observametrics.core.config import MetricsOptions
from observametrics.core.context import MetricsContext

logger = logging.getLogger(__name__)


def create_metrics_router(context: MetricsContext) -> APIRouter:
    """Create a FastAPI router serving the metrics endpoint.

    Args:
        context: Metrics context to render.

    Returns:
        APIRouter with a GET route on ``context.options.endpoint``
        (empty when the endpoint is disabled).
    """
    router = APIRouter()
    endpoint = context.options.endpoint
    if endpoint is None:
        return router

    @router.get(endpoint, include_in_schema=False)
    async def get_metrics() -> Response:
        """Return metrics in Prometheus text format."""
        try:
            body = context.get_metrics()
        except Exception:
            logger.exception("Error rendering metrics endpoint")
            return JSONResponse({"error": "Internal Server Error"}, status_code=500)
        return Response(content=body, media_type=context.registry.content_type)

    return router


def install_metrics(
    app: FastAPI,
    options: MetricsOptions | None = None,
    **kwargs: Any,
) -> MetricsContext:
    """Instrument a FastAPI application.

    Adds the recording middleware, mounts the metrics endpoint and stores
    the context on ``app.state.metrics``. The exporter timer starts and
    stops with the application lifespan.

    Args:
        app: Application to instrument.
        options: Plugin options, defaults to MetricsOptions().
        **kwargs: Passed to MetricsContext (registry, sender,
            on_missing_metric).

    Returns:
        The MetricsContext application code records through.
    """
    context = MetricsContext(options, **kwargs)
    app.add_middleware(ASGIMetricsMiddleware, context=context, serve_endpoint=False)
    app.include_router(create_metrics_router(context))
    app.state.metrics = context
    return context
