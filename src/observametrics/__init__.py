"""Prometheus metrics instrumentation for ASGI, FastAPI and Django servers."""

from observametrics.core.config import (
    AwsCredentials,
    ExporterConfig,
    HttpMetricConfig,
    HttpMetricsConfig,
    MetricsOptions,
)
from observametrics.core.context import MetricsContext
from observametrics.core.exporter import BufferedExporter
from observametrics.core.models import (
    CustomMetricConfig,
    CustomMetricDefinition,
    HttpRequestMetrics,
    MetricDefinition,
    MetricObservation,
)
from observametrics.core.ports import MetricSenderPort
from observametrics.core.recorder import record_http_request
from observametrics.core.registry import MetricRegistry, Primitive

__all__ = [
    "AwsCredentials",
    "BufferedExporter",
    "CustomMetricConfig",
    "CustomMetricDefinition",
    "ExporterConfig",
    "HttpMetricConfig",
    "HttpMetricsConfig",
    "HttpRequestMetrics",
    "MetricDefinition",
    "MetricObservation",
    "MetricRegistry",
    "MetricSenderPort",
    "MetricsContext",
    "MetricsOptions",
    "Primitive",
    "record_http_request",
]
