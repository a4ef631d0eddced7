"""Registry wrapper around prometheus_client.

MetricRegistry owns a CollectorRegistry and the primitives materialized in
it. Each instance creates its own CollectorRegistry unless one is injected,
so tests and multiple servers never share process-global state by accident.
"""

import logging
from collections.abc import Mapping
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    Summary,
    generate_latest,
)
from prometheus_summary import Summary as QuantileSummary

from observametrics.core.models import METRIC_TYPES, MetricDefinition

logger = logging.getLogger(__name__)

# Allowed rank error for each configured quantile
_QUANTILE_ERROR = 0.005

_OPERATIONS = {
    "counter": frozenset({"inc"}),
    "gauge": frozenset({"inc", "set"}),
    "histogram": frozenset({"observe"}),
    "summary": frozenset({"observe"}),
}


class Primitive:
    """A registered metric with lenient label binding.

    Label values are bound to exactly the declared label names: missing
    names are filled with an empty string and unknown names are dropped,
    so a mislabeled call never raises from the request path.
    """

    def __init__(
        self,
        kind: str,
        name: str,
        metric: Counter | Gauge | Histogram | Summary,
        labelnames: tuple[str, ...],
        default_labels: Mapping[str, str] | None = None,
    ) -> None:
        self.kind = kind
        self.name = name
        self.metric = metric
        self.labelnames = labelnames
        self.default_labels = dict(default_labels or {})

    def _child(self, labels: Mapping[str, str] | None):
        if not self.labelnames:
            return self.metric
        merged = {**self.default_labels, **(labels or {})}
        return self.metric.labels(
            **{name: str(merged.get(name, "")) for name in self.labelnames}
        )

    def _check(self, operation: str) -> None:
        if operation not in _OPERATIONS[self.kind]:
            raise TypeError(f"{self.kind} {self.name!r} does not support {operation}")

    def inc(self, labels: Mapping[str, str] | None = None, value: float = 1.0) -> None:
        """Increment a counter or gauge."""
        self._check("inc")
        self._child(labels).inc(value)

    def set(self, labels: Mapping[str, str] | None, value: float) -> None:
        """Set a gauge."""
        self._check("set")
        self._child(labels).set(value)

    def observe(self, labels: Mapping[str, str] | None, value: float) -> None:
        """Observe a value on a histogram or summary."""
        self._check("observe")
        self._child(labels).observe(value)


class MetricRegistry:
    """Named collection of primitives rendered in the Prometheus text format.

    Primitives are looked up by the name they were defined with. When a
    prefix is set, it is prepended to the name exposed to Prometheus only.

    Example:
        ```python
        registry = MetricRegistry()
        registry.register(MetricDefinition("gauge", "queue_depth", "Queue depth"))
        registry.get("queue_depth", "gauge").set(None, 3)
        print(registry.render())
        ```
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(
        self, collector_registry: CollectorRegistry | None = None, prefix: str = ""
    ) -> None:
        """Initialize the registry.

        Args:
            collector_registry: prometheus_client registry to register into.
                A fresh CollectorRegistry is created when omitted.
            prefix: Prepended to every exposed metric name. Process, platform
                and GC metrics keep their standard names.
        """
        self._registry = (
            collector_registry if collector_registry is not None else CollectorRegistry()
        )
        self.prefix = prefix
        self._primitives: dict[str, Primitive] = {}
        self._definitions: dict[str, MetricDefinition] = {}
        self._collectors: list[object] = []
        self._default_labels: dict[str, str] = {}
        self._default_metrics_enabled = False

    @property
    def collector_registry(self) -> CollectorRegistry:
        """The underlying prometheus_client registry."""
        return self._registry

    @property
    def default_labels(self) -> dict[str, str]:
        """Labels merged into every observation."""
        return dict(self._default_labels)

    def set_default_labels(self, labels: Mapping[str, str]) -> None:
        """Set labels applied to every primitive registered afterwards.

        Args:
            labels: Label names and values.

        Raises:
            RuntimeError: If primitives were already registered; their label
                names are fixed at creation.
        """
        if self._primitives:
            raise RuntimeError("Default labels must be set before registering metrics")
        self._default_labels = {key: str(value) for key, value in labels.items()}

    def register(self, definition: MetricDefinition) -> Primitive | None:
        """Materialize a definition as a primitive.

        Args:
            definition: What to register.

        Returns:
            The live primitive, or None when the definition was skipped
            (unknown type, or rejected by prometheus_client).
        """
        existing = self._primitives.get(definition.name)
        if existing is not None:
            if existing.kind == definition.type:
                return existing
            logger.debug(
                "Skipping %s %r: already registered as %s",
                definition.type,
                definition.name,
                existing.kind,
            )
            return None
        if definition.type not in METRIC_TYPES:
            logger.debug(
                "Skipping metric %r with unknown type %r",
                definition.name,
                definition.type,
            )
            return None

        labelnames = tuple(definition.labels) + tuple(
            key for key in self._default_labels if key not in definition.labels
        )
        try:
            metric = self._create(definition, labelnames)
        except ValueError as e:
            logger.debug("Skipping metric %r: %s", definition.name, e)
            return None

        self._collectors.append(metric)
        primitive = Primitive(
            definition.type,
            self.prefix + definition.name,
            metric,
            labelnames,
            self._default_labels,
        )
        self._primitives[definition.name] = primitive
        self._definitions[definition.name] = definition
        return primitive

    def create_counter(self, definition: MetricDefinition) -> Primitive:
        """Register a counter, failing loudly instead of skipping.

        Raises:
            ValueError: If the definition is not a counter or cannot be
                registered.
        """
        return self._create_typed(definition, "counter")

    def create_gauge(self, definition: MetricDefinition) -> Primitive:
        """Register a gauge, failing loudly instead of skipping."""
        return self._create_typed(definition, "gauge")

    def create_histogram(self, definition: MetricDefinition) -> Primitive:
        """Register a histogram, failing loudly instead of skipping."""
        return self._create_typed(definition, "histogram")

    def create_summary(self, definition: MetricDefinition) -> Primitive:
        """Register a summary, failing loudly instead of skipping."""
        return self._create_typed(definition, "summary")

    def _create_typed(self, definition: MetricDefinition, kind: str) -> Primitive:
        if definition.type != kind:
            raise ValueError(f'Metric type must be "{kind}"')
        primitive = self.register(definition)
        if primitive is None:
            raise ValueError(f"Cannot register {kind} {definition.name!r}")
        return primitive

    def _create(
        self, definition: MetricDefinition, labelnames: tuple[str, ...]
    ) -> Counter | Gauge | Histogram | Summary:
        kwargs: dict[str, Any] = {
            "name": self.prefix + definition.name,
            "documentation": definition.help,
            "labelnames": labelnames,
            "registry": self._registry,
        }
        if definition.type == "counter":
            return Counter(**kwargs)
        if definition.type == "gauge":
            return Gauge(**kwargs)
        if definition.type == "histogram":
            if definition.buckets:
                kwargs["buckets"] = sorted(definition.buckets)
            return Histogram(**kwargs)
        if not (
            definition.percentiles or definition.max_age_seconds or definition.age_buckets
        ):
            return Summary(**kwargs)
        # Quantiles come from a sliding-window estimator
        if definition.percentiles:
            kwargs["invariants"] = tuple(
                (quantile, _QUANTILE_ERROR) for quantile in definition.percentiles
            )
        if definition.max_age_seconds:
            kwargs["max_age_seconds"] = definition.max_age_seconds
        if definition.age_buckets:
            kwargs["age_buckets"] = definition.age_buckets
        return QuantileSummary(**kwargs)

    def get(self, name: str, kind: str | None = None) -> Primitive | None:
        """Look up a primitive by name, optionally requiring a kind."""
        primitive = self._primitives.get(name)
        if primitive is None or (kind is not None and primitive.kind != kind):
            return None
        return primitive

    def names(self) -> list[str]:
        """Names of all registered primitives, in registration order."""
        return list(self._primitives)

    def unregister(self, name: str) -> bool:
        """Remove one primitive.

        Returns:
            False when nothing is registered under ``name``.
        """
        primitive = self._primitives.pop(name, None)
        if primitive is None:
            return False
        del self._definitions[name]
        self._registry.unregister(primitive.metric)
        self._collectors.remove(primitive.metric)
        return True

    def reset(self) -> None:
        """Zero every primitive and drop its labeled series.

        Registrations survive, and so do Primitive objects already handed
        out. Process, platform and GC metrics are untouched.
        """
        for name, primitive in self._primitives.items():
            self._registry.unregister(primitive.metric)
            self._collectors.remove(primitive.metric)
            primitive.metric = self._create(self._definitions[name], primitive.labelnames)
            self._collectors.append(primitive.metric)

    def enable_default_metrics(self) -> None:
        """Register process, platform and garbage collector metrics once."""
        if self._default_metrics_enabled:
            return
        for collector_cls in (ProcessCollector, PlatformCollector, GCCollector):
            self._collectors.append(collector_cls(registry=self._registry))
        self._default_metrics_enabled = True

    def render(self) -> str:
        """Render every registered collector as exposition text."""
        return generate_latest(self._registry).decode("utf-8")

    def to_json(self) -> list[dict[str, Any]]:
        """Current values as JSON-ready dicts, one per metric family.

        Each family carries ``name``, ``help``, ``type`` and ``values``; each
        value carries the sample ``name``, its ``labels`` and ``value``.
        Counter family names have no ``_total`` suffix, their samples do.
        """
        return [
            {
                "name": family.name,
                "help": family.documentation,
                "type": family.type,
                "values": [
                    {"name": s.name, "labels": dict(s.labels), "value": s.value}
                    for s in family.samples
                ],
            }
            for family in self._registry.collect()
        ]

    def clear(self) -> None:
        """Unregister everything this registry registered."""
        for collector in self._collectors:
            try:
                self._registry.unregister(collector)
            except KeyError:
                # GCCollector does not register itself outside CPython
                continue
        self._collectors.clear()
        self._primitives.clear()
        self._definitions.clear()
        self._default_labels = {}
        self._default_metrics_enabled = False
