"""Configuration objects for metrics instrumentation.

Every configuration object is a frozen dataclass with its defaults applied once
at construction. ``from_mapping`` constructors accept plain dicts (for example
loaded from a settings file) and merge partial entries with the defaults here,
so call sites never merge options themselves.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from observametrics.core.models import (
    CustomMetricConfig,
    CustomMetricDefinition,
    MetricDefinition,
)

HTTP_LABELS = ("method", "route", "status_code")


@dataclass(frozen=True)
class AwsCredentials:
    """Static AWS credentials. Omit to use the default credential chain."""

    access_key_id: str
    secret_access_key: str
    session_token: str | None = None


@dataclass(frozen=True)
class ExporterConfig:
    """Settings for the buffered CloudWatch exporter.

    Attributes:
        namespace: CloudWatch namespace the metrics are published under.
        region: AWS region.
        batch_size: Buffered observations that trigger a flush.
        flush_interval_ms: Period of the automatic flush timer.
        endpoint: Custom endpoint URL (LocalStack, VPC endpoints).
        credentials: Static credentials, None for the default chain.
    """

    namespace: str
    region: str = "us-east-1"
    batch_size: int = 20
    flush_interval_ms: int = 60000
    endpoint: str | None = None
    credentials: AwsCredentials | None = None

    def __post_init__(self) -> None:
        if not self.namespace:
            raise ValueError("namespace is required")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.flush_interval_ms <= 0:
            raise ValueError(
                f"flush_interval_ms must be > 0, got {self.flush_interval_ms}"
            )

    @property
    def flush_interval(self) -> float:
        """Flush interval in seconds."""
        return self.flush_interval_ms / 1000

    def client_kwargs(self) -> dict[str, Any]:
        """Build kwargs suitable for creating a CloudWatch client."""
        kwargs: dict[str, Any] = {"region_name": self.region}
        if self.endpoint:
            kwargs["endpoint_url"] = self.endpoint
        if self.credentials is not None:
            kwargs["aws_access_key_id"] = self.credentials.access_key_id
            kwargs["aws_secret_access_key"] = self.credentials.secret_access_key
            if self.credentials.session_token:
                kwargs["aws_session_token"] = self.credentials.session_token
        return kwargs

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ExporterConfig":
        """Build from a plain dict, converting nested credentials."""
        data = dict(mapping)
        credentials = data.get("credentials")
        if isinstance(credentials, Mapping):
            data["credentials"] = AwsCredentials(**credentials)
        return cls(**data)


@dataclass(frozen=True)
class HttpMetricConfig:
    """Settings for one of the built-in HTTP metrics."""

    name: str
    help: str
    enabled: bool = True
    buckets: tuple[float, ...] | None = None
    labels: tuple[str, ...] = HTTP_LABELS

    def to_definition(self, kind: str) -> MetricDefinition:
        """Describe this metric as a primitive of the given kind."""
        return MetricDefinition(
            type=kind,
            name=self.name,
            help=self.help,
            labels=tuple(self.labels),
            buckets=self.buckets,
        )

    def merged(self, overrides: Mapping[str, Any]) -> "HttpMetricConfig":
        """Return a copy with the given fields replaced."""
        data = dict(overrides)
        for key in ("buckets", "labels"):
            if data.get(key) is not None:
                data[key] = tuple(data[key])
        return replace(self, **data)


@dataclass(frozen=True)
class HttpMetricsConfig:
    """The five canonical HTTP metrics."""

    request_duration: HttpMetricConfig = HttpMetricConfig(
        name="http_request_duration_ms",
        help="Duration of HTTP requests in milliseconds",
        buckets=(0.1, 5, 15, 50, 100, 200, 300, 400, 500, 1000, 2000, 5000),
    )
    request_count: HttpMetricConfig = HttpMetricConfig(
        name="http_requests_total",
        help="Total number of HTTP requests",
    )
    response_size: HttpMetricConfig = HttpMetricConfig(
        name="http_response_size_bytes",
        help="Size of HTTP responses in bytes",
        buckets=(1, 100, 1000, 10000, 100000, 1000000),
    )
    error_count: HttpMetricConfig = HttpMetricConfig(
        name="http_errors_total",
        help="Total number of HTTP errors",
    )
    success_count: HttpMetricConfig = HttpMetricConfig(
        name="http_success_total",
        help="Total number of successful HTTP requests",
    )

    def definitions(self) -> list[MetricDefinition]:
        """Definitions of every enabled HTTP metric."""
        kinds = {
            "request_duration": "histogram",
            "request_count": "counter",
            "response_size": "histogram",
            "error_count": "counter",
            "success_count": "counter",
        }
        return [
            getattr(self, attr).to_definition(kind)
            for attr, kind in kinds.items()
            if getattr(self, attr).enabled
        ]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "HttpMetricsConfig":
        """Merge partial per-metric dicts over the defaults."""
        defaults = cls()
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise TypeError(f"Unknown http_metrics keys: {sorted(unknown)}")
        values = {}
        for key, value in mapping.items():
            if isinstance(value, HttpMetricConfig):
                values[key] = value
            else:
                values[key] = getattr(defaults, key).merged(value)
        return replace(defaults, **values)


def _custom_metric(
    item: CustomMetricDefinition | Mapping[str, Any],
) -> CustomMetricDefinition:
    if isinstance(item, CustomMetricDefinition):
        return item
    data = dict(item)
    config = data.get("config")
    if isinstance(config, Mapping):
        config = {
            key: tuple(value) if isinstance(value, list) else value
            for key, value in config.items()
        }
        data["config"] = CustomMetricConfig(**config)
    data["labels"] = tuple(data.get("labels") or ())
    return CustomMetricDefinition(**data)


@dataclass(frozen=True)
class MetricsOptions:
    """Top-level options for the metrics plugin.

    Attributes:
        endpoint: Path serving the exposition text, None to disable.
        enable_default_metrics: Register process, platform and GC collectors.
        default_metrics_interval_ms: Ignored. Process, platform and GC
            collectors are read on every scrape, so there is no collection
            interval to configure. Kept so existing option dicts still load.
        http_metrics: Built-in HTTP metric settings.
        custom_metrics: Business metrics to register at startup.
        cloudwatch: Exporter settings, None disables exporting.
        exclude_routes: Route substrings never recorded.
        include_routes: When set, only routes containing one of these.
        default_labels: Labels added to every metric.
        prefix: Prepended to the exposed name of every HTTP and custom
            metric. Lookups and exported observations use the unprefixed name.
        created_series: Expose the `*_created` timestamp series. Setting this
            to False turns them off for the whole process, since
            prometheus_client keeps the switch globally.
    """

    endpoint: str | None = "/metrics"
    enable_default_metrics: bool = True
    default_metrics_interval_ms: int = 10000
    http_metrics: HttpMetricsConfig = field(default_factory=HttpMetricsConfig)
    custom_metrics: tuple[CustomMetricDefinition, ...] = ()
    cloudwatch: ExporterConfig | None = None
    exclude_routes: tuple[str, ...] = ("/health", "/healthcheck")
    include_routes: tuple[str, ...] = ()
    default_labels: dict[str, str] = field(default_factory=dict)
    prefix: str = ""
    created_series: bool = True

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "MetricsOptions":
        """Build options from a (possibly partial) nested dict.

        Args:
            mapping: Option values keyed by field name. Nested
                ``http_metrics``, ``custom_metrics`` and ``cloudwatch``
                entries may themselves be plain dicts.

        Returns:
            Fully populated MetricsOptions.

        Raises:
            TypeError: If mapping contains an unknown option.
            ValueError: If the exporter settings are invalid.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise TypeError(f"Unknown metrics options: {sorted(unknown)}")

        data = dict(mapping)
        http_metrics = data.get("http_metrics")
        if isinstance(http_metrics, Mapping):
            data["http_metrics"] = HttpMetricsConfig.from_mapping(http_metrics)
        cloudwatch = data.get("cloudwatch")
        if isinstance(cloudwatch, Mapping):
            data["cloudwatch"] = ExporterConfig.from_mapping(cloudwatch)
        if "custom_metrics" in data:
            data["custom_metrics"] = tuple(
                _custom_metric(item) for item in data["custom_metrics"]
            )
        for key in ("exclude_routes", "include_routes"):
            if key in data:
                data[key] = _as_tuple(data[key])
        if "default_labels" in data:
            data["default_labels"] = dict(data["default_labels"] or {})
        return cls(**data)


def _as_tuple(values: Iterable[str] | None) -> tuple[str, ...]:
    return tuple(values or ())
