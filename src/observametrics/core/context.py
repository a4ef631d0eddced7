"""Application-facing metrics context.

MetricsContext assembles a registry, the HTTP and custom primitives and an
optional exporter from MetricsOptions, and exposes the small imperative API
application code uses to record business metrics. Framework adapters attach
one instance to the host server.
"""

import logging
from collections.abc import Mapping
from typing import Any

from prometheus_client import disable_created_metrics

from observametrics.core.config import MetricsOptions
from observametrics.core.exporter import BufferedExporter
from observametrics.core.models import HttpRequestMetrics
from observametrics.core.ports import MetricSenderPort, MissingMetricHook
from observametrics.core.recorder import record_http_request
from observametrics.core.registry import MetricRegistry, Primitive

logger = logging.getLogger(__name__)


class MetricsContext:
    """Metrics API attached to a host server.

    Lookups by name are lenient: recording against a name that is not
    registered as the expected kind does nothing, so a misconfigured
    custom metric never fails a request. Pass ``on_missing_metric`` to see
    those misses.
    """

    def __init__(
        self,
        options: MetricsOptions | None = None,
        *,
        registry: MetricRegistry | None = None,
        sender: MetricSenderPort | None = None,
        on_missing_metric: MissingMetricHook | None = None,
    ) -> None:
        """Build the registry contents and the exporter.

        Args:
            options: Plugin options, defaults to MetricsOptions().
            registry: Registry to populate. When omitted, a fresh one using
                ``options.prefix``.
            sender: Remote-send boundary for the exporter.
            on_missing_metric: Called with (name, kind) on lookup misses.
        """
        self.options = options if options is not None else MetricsOptions()
        self._registry = (
            registry
            if registry is not None
            else MetricRegistry(prefix=self.options.prefix)
        )
        self.on_missing_metric = on_missing_metric
        self._exporter: BufferedExporter | None = None

        if not self.options.created_series:
            disable_created_metrics()
        if self.options.cloudwatch is not None:
            self._exporter = BufferedExporter(self.options.cloudwatch, sender)
        if self.options.default_labels:
            self._registry.set_default_labels(self.options.default_labels)
        if self.options.enable_default_metrics:
            self._registry.enable_default_metrics()
        for definition in self.options.http_metrics.definitions():
            self._registry.register(definition)
        for custom in self.options.custom_metrics:
            self._registry.register(custom.to_definition())

    @property
    def registry(self) -> MetricRegistry:
        """The registry backing this context."""
        return self._registry

    @property
    def exporter(self) -> BufferedExporter | None:
        """The exporter, None when CloudWatch export is not configured."""
        return self._exporter

    def get_metrics(self) -> str:
        """Render all metrics as exposition text."""
        return self._registry.render()

    def get_metrics_as_json(self) -> list[dict[str, Any]]:
        """Current values as JSON-ready dicts, one per metric family."""
        return self._registry.to_json()

    def clear_metrics(self) -> None:
        """Remove every metric from the registry."""
        self._registry.clear()

    def reset_metrics(self) -> None:
        """Zero every HTTP and custom metric, keeping them registered."""
        self._registry.reset()

    def unregister_metric(self, name: str) -> bool:
        """Remove one metric by name. False when it was not registered."""
        return self._registry.unregister(name)

    def _lookup(self, name: str, kind: str) -> Primitive | None:
        primitive = self._registry.get(name, kind)
        if primitive is None and self.on_missing_metric is not None:
            self.on_missing_metric(name, kind)
        return primitive

    def _export(
        self, name: str, value: float, labels: Mapping[str, str] | None
    ) -> None:
        if self._exporter is not None:
            self._exporter.export_metric(
                name, value, {**self._registry.default_labels, **(labels or {})}
            )

    def increment_counter(
        self,
        name: str,
        labels: Mapping[str, str] | None = None,
        value: float = 1.0,
    ) -> None:
        """Increment a registered counter."""
        primitive = self._lookup(name, "counter")
        if primitive is None:
            return
        primitive.inc(labels, value)
        self._export(name, value, labels)

    def set_gauge(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Set a registered gauge."""
        primitive = self._lookup(name, "gauge")
        if primitive is None:
            return
        primitive.set(labels, value)
        self._export(name, value, labels)

    def observe_histogram(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Observe a value on a registered histogram."""
        primitive = self._lookup(name, "histogram")
        if primitive is None:
            return
        primitive.observe(labels, value)
        self._export(name, value, labels)

    def observe_summary(
        self, name: str, value: float, labels: Mapping[str, str] | None = None
    ) -> None:
        """Observe a value on a registered summary."""
        primitive = self._lookup(name, "summary")
        if primitive is None:
            return
        primitive.observe(labels, value)
        self._export(name, value, labels)

    def record_http_request(self, metrics: HttpRequestMetrics) -> bool:
        """Record a completed HTTP request, honoring route filters."""
        return record_http_request(
            metrics,
            self.options.http_metrics,
            self._registry,
            self._exporter,
            exclude_routes=self.options.exclude_routes,
            include_routes=self.options.include_routes,
        )

    def start(self) -> None:
        """Arm the exporter's flush timer.

        Inside a running event loop the timer runs on that loop, otherwise on
        the exporter's worker thread.
        """
        if self._exporter is not None:
            self._exporter.start()

    async def shutdown(self) -> None:
        """Stop the exporter timer and flush pending observations.

        Automatic flushes already in flight are awaited first, so a batch
        they fail to send is requeued in time for the final flush. A failed
        final flush is logged, not raised.
        """
        exporter = self._exporter
        if exporter is None:
            return
        exporter.stop()
        try:
            await exporter.wait_pending()
            await exporter.flush()
        except Exception:
            logger.exception(
                "Final metrics flush failed, %d observations not exported",
                exporter.buffer_size,
            )

    def close(self) -> None:
        """Synchronous shutdown for hosts without an event loop.

        Flushes what is pending and releases the exporter's worker thread.
        A failed final flush is logged, not raised.
        """
        exporter = self._exporter
        if exporter is None:
            return
        try:
            exporter.close()
        except Exception:
            logger.exception(
                "Final metrics flush failed, %d observations not exported",
                exporter.buffer_size,
            )
