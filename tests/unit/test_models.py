"""Tests for core domain models."""

import time
from dataclasses import FrozenInstanceError

import pytest

from observametrics.core.models import (
    CustomMetricConfig,
    CustomMetricDefinition,
    HttpRequestMetrics,
    MetricDefinition,
    MetricObservation,
)

pytestmark = [pytest.mark.core, pytest.mark.tier(1)]


class TestMetricObservation:
    """Tests for MetricObservation."""

    def test_defaults(self) -> None:
        """Labels default to empty and timestamp to now."""
        before = time.time()
        obs = MetricObservation(name="requests", value=1.0)

        assert obs.labels == {}
        assert before <= obs.timestamp <= time.time()

    def test_is_immutable(self) -> None:
        """Observations cannot be modified after creation."""
        obs = MetricObservation(name="requests", value=1.0)

        with pytest.raises(FrozenInstanceError):
            obs.value = 2.0  # type: ignore[misc]

    def test_default_labels_are_not_shared(self) -> None:
        """Each observation gets its own labels dict."""
        a = MetricObservation(name="a", value=1.0)
        b = MetricObservation(name="b", value=1.0)

        assert a.labels is not b.labels


class TestHttpRequestMetrics:
    """Tests for HttpRequestMetrics."""

    def test_labels_stringify_status(self) -> None:
        """Status code is rendered as a string label."""
        metrics = HttpRequestMetrics("GET", "/users/{id}", 200, 12.5)

        assert metrics.labels == {
            "method": "GET",
            "route": "/users/{id}",
            "status_code": "200",
        }

    def test_extra_labels_are_merged(self) -> None:
        """Extra labels extend the derived label set."""
        metrics = HttpRequestMetrics(
            "POST", "/orders", 201, 3.0, extra_labels={"tenant": "acme"}
        )

        assert metrics.labels["tenant"] == "acme"
        assert metrics.labels["method"] == "POST"

    def test_response_size_defaults_to_unknown(self) -> None:
        """Response size is None unless provided."""
        assert HttpRequestMetrics("GET", "/", 204, 1.0).response_size_bytes is None


class TestCustomMetricDefinition:
    """Tests for CustomMetricDefinition.to_definition()."""

    def test_without_config(self) -> None:
        """A bare custom metric flattens with no type-specific settings."""
        custom = CustomMetricDefinition("counter", "orders_total", "Orders", ("kind",))

        assert custom.to_definition() == MetricDefinition(
            type="counter", name="orders_total", help="Orders", labels=("kind",)
        )

    def test_config_is_flattened(self) -> None:
        """Histogram and summary settings move onto the definition."""
        custom = CustomMetricDefinition(
            "histogram",
            "job_seconds",
            "Job time",
            config=CustomMetricConfig(buckets=(1, 5, 10)),
        )

        definition = custom.to_definition()

        assert definition.buckets == (1, 5, 10)
        assert definition.percentiles is None
