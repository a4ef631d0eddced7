"""Core domain models for metrics instrumentation."""

import time
from dataclasses import dataclass, field

METRIC_TYPES = frozenset({"counter", "gauge", "histogram", "summary"})


@dataclass(frozen=True)
class MetricObservation:
    """A single metric fact queued for export.

    Attributes:
        name: Metric name (e.g., http_requests_total).
        value: The measured value.
        labels: Key-value pairs for metric dimensions.
        timestamp: Unix timestamp in seconds, defaults to creation time.
    """

    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class HttpRequestMetrics:
    """Outcome of one completed HTTP request/response cycle.

    Attributes:
        method: HTTP request method.
        route: Matched route template, or the raw path when none matched.
        status_code: Response status code.
        duration_ms: Wall-clock duration in milliseconds.
        response_size_bytes: Response size, None when unknown.
        extra_labels: Additional labels merged over the derived ones.
    """

    method: str
    route: str
    status_code: int
    duration_ms: float
    response_size_bytes: int | None = None
    extra_labels: dict[str, str] = field(default_factory=dict)

    @property
    def labels(self) -> dict[str, str]:
        """Label set shared by every HTTP sub-metric."""
        return {
            "method": self.method,
            "route": self.route,
            "status_code": str(self.status_code),
            **self.extra_labels,
        }


@dataclass(frozen=True)
class MetricDefinition:
    """Declarative description of a primitive to materialize in a registry.

    Attributes:
        type: One of counter, gauge, histogram, summary.
        name: Metric name.
        help: Help text rendered in the exposition output.
        labels: Label names accepted by the primitive.
        buckets: Histogram bucket boundaries (histogram only).
        percentiles: Summary quantiles (summary only).
        max_age_seconds: Summary sliding window (summary only).
        age_buckets: Summary window buckets (summary only).
    """

    type: str
    name: str
    help: str
    labels: tuple[str, ...] = ()
    buckets: tuple[float, ...] | None = None
    percentiles: tuple[float, ...] | None = None
    max_age_seconds: float | None = None
    age_buckets: int | None = None


@dataclass(frozen=True)
class CustomMetricConfig:
    """Type-specific settings for a custom metric."""

    buckets: tuple[float, ...] | None = None
    percentiles: tuple[float, ...] | None = None
    max_age_seconds: float | None = None
    age_buckets: int | None = None


@dataclass(frozen=True)
class CustomMetricDefinition:
    """A business metric declared by application code."""

    type: str
    name: str
    help: str
    labels: tuple[str, ...] = ()
    config: CustomMetricConfig | None = None

    def to_definition(self) -> MetricDefinition:
        """Flatten into a MetricDefinition for the registry."""
        config = self.config or CustomMetricConfig()
        return MetricDefinition(
            type=self.type,
            name=self.name,
            help=self.help,
            labels=tuple(self.labels),
            buckets=config.buckets,
            percentiles=config.percentiles,
            max_age_seconds=config.max_age_seconds,
            age_buckets=config.age_buckets,
        )
