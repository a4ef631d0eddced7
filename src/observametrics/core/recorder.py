"""Per-request HTTP instrumentation.

``record_http_request`` turns one completed request/response cycle into
updates of the five canonical HTTP metrics, plus the same observations on an
attached exporter. It holds no state: calling it twice for one request
counts that request twice, so adapters call it exactly once per cycle.
"""

from collections.abc import Iterable

from observametrics.core.config import HttpMetricConfig, HttpMetricsConfig
from observametrics.core.exporter import BufferedExporter
from observametrics.core.models import HttpRequestMetrics
from observametrics.core.registry import MetricRegistry


def resolve_route(template: str | None, path: str) -> str:
    """Prefer the matched route template over the raw request path.

    Args:
        template: Route template such as ``/users/{user_id}``, if matched.
        path: Raw request path.

    Returns:
        The template when available, else the path.
    """
    return template or path


def route_is_recorded(
    route: str,
    exclude_routes: Iterable[str] = (),
    include_routes: Iterable[str] = (),
) -> bool:
    """Check a route against substring exclude/include filters.

    Exclusion is checked first and wins. Include filters only apply when
    at least one is configured.

    Args:
        route: Resolved route.
        exclude_routes: Substrings that skip recording.
        include_routes: Substrings of which at least one must match.

    Returns:
        True if the request should be recorded.
    """
    # @tra: Recorder.Filter.Exclude
    if any(excluded in route for excluded in exclude_routes):
        return False
    # @tra: Recorder.Filter.Include
    include = list(include_routes)
    if include and not any(included in route for included in include):
        return False
    return True


def _apply(
    metric: HttpMetricConfig,
    kind: str,
    value: float,
    labels: dict[str, str],
    registry: MetricRegistry,
    exporter: BufferedExporter | None,
) -> None:
    if not metric.enabled:
        return
    primitive = registry.get(metric.name, kind)
    if primitive is None:
        return
    if kind == "counter":
        primitive.inc(labels, value)
    else:
        primitive.observe(labels, value)
    if exporter is not None:
        exporter.export_metric(metric.name, value, labels)


def record_http_request(
    request_metrics: HttpRequestMetrics,
    config: HttpMetricsConfig,
    registry: MetricRegistry,
    exporter: BufferedExporter | None = None,
    *,
    exclude_routes: Iterable[str] = (),
    include_routes: Iterable[str] = (),
) -> bool:
    """Record one completed HTTP request.

    A status of 400 or above counts as an error; 200-399 counts as a
    success. The two are independent, so 1xx responses count as neither.

    Args:
        request_metrics: Outcome of the request.
        config: Which HTTP metrics are enabled, and their names.
        registry: Registry holding the HTTP primitives.
        exporter: Optional exporter receiving the same observations.
        exclude_routes: Route substrings that skip recording.
        include_routes: Route substrings of which one must match.

    Returns:
        False if the route was filtered out, True otherwise.
    """
    if not route_is_recorded(request_metrics.route, exclude_routes, include_routes):
        return False

    status = request_metrics.status_code
    is_error = status >= 400
    is_success = 200 <= status < 400
    labels = {**registry.default_labels, **request_metrics.labels}

    # @tra: Recorder.Metric.Duration
    _apply(
        config.request_duration,
        "histogram",
        request_metrics.duration_ms,
        labels,
        registry,
        exporter,
    )
    # @tra: Recorder.Metric.Count
    _apply(config.request_count, "counter", 1, labels, registry, exporter)
    # @tra: Recorder.Metric.ResponseSize
    if request_metrics.response_size_bytes is not None:
        _apply(
            config.response_size,
            "histogram",
            request_metrics.response_size_bytes,
            labels,
            registry,
            exporter,
        )
    # @tra: Recorder.Metric.Errors
    if is_error:
        _apply(config.error_count, "counter", 1, labels, registry, exporter)
    # @tra: Recorder.Metric.Successes
    if is_success:
        _apply(config.success_count, "counter", 1, labels, registry, exporter)
    return True
