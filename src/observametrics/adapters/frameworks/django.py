"""Django adapter for metrics instrumentation.

Django instantiates middleware from dotted paths, so bind the generated
class to a module attribute and reference it from settings:

    ```python
    # myproject/metrics.py
    context = MetricsContext(MetricsOptions(exclude_routes=("/health",)))
    MetricsMiddleware = create_metrics_middleware(context)
    urlpatterns = create_metrics_urlpatterns(context)

    # settings.py
    MIDDLEWARE = ["myproject.metrics.MetricsMiddleware", ...]
    ```

With an exporter configured, flushes run on a worker thread the exporter
starts on the first recorded request. Django has no shutdown hook, so call
``context.close()`` from your own process teardown (``atexit`` works) to
send what is still buffered.
"""

import logging
import time
from collections.abc import Callable

from django.http import HttpRequest, HttpResponse, JsonResponse
from django.http.response import HttpResponseBase
from django.urls import URLPattern, path

from observametrics.core.context import MetricsContext
from observametrics.core.models import HttpRequestMetrics
from observametrics.core.recorder import resolve_route

logger = logging.getLogger(__name__)


def _route_template(request: HttpRequest) -> str | None:
    """Return the matched URL pattern, e.g. ``/users/<int:user_id>``."""
    match = getattr(request, "resolver_match", None)
    route = getattr(match, "route", None)
    if not route:
        return None
    return route if route.startswith("/") else f"/{route}"


def _response_size(response: HttpResponseBase) -> int | None:
    if getattr(response, "streaming", False):
        return None
    return len(response.content)


def create_metrics_middleware(
    context: MetricsContext,
) -> type:
    """Create a Django middleware class recording into ``context``.

    Args:
        context: Metrics context receiving the observations.

    Returns:
        Middleware class following Django's ``get_response`` protocol.
    """

    class DjangoMetricsMiddleware:
        def __init__(
            self, get_response: Callable[[HttpRequest], HttpResponseBase]
        ) -> None:
            self.get_response = get_response

        def __call__(self, request: HttpRequest) -> HttpResponseBase:
            start_time = time.perf_counter()
            response = self.get_response(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            context.record_http_request(
                HttpRequestMetrics(
                    method=request.method or "GET",
                    route=resolve_route(_route_template(request), request.path),
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                    response_size_bytes=_response_size(response),
                )
            )
            return response

    return DjangoMetricsMiddleware


def create_metrics_view(
    context: MetricsContext,
) -> Callable[[HttpRequest], HttpResponse]:
    """Create a view rendering the registry as exposition text."""

    def metrics_view(request: HttpRequest) -> HttpResponse:
        try:
            body = context.get_metrics()
        except Exception:
            logger.exception("Error rendering metrics endpoint")
            return JsonResponse({"error": "Internal Server Error"}, status=500)
        return HttpResponse(body, content_type=context.registry.content_type)

    return metrics_view


def create_metrics_urlpatterns(context: MetricsContext) -> list[URLPattern]:
    """Create URL patterns for the metrics endpoint.

    Args:
        context: Metrics context to render.

    Returns:
        A one-element list, or an empty list when the endpoint is disabled.
    """
    endpoint = context.options.endpoint
    if endpoint is None:
        return []
    return [path(endpoint.lstrip("/"), create_metrics_view(context), name="metrics")]
