"""Remote-send boundaries for the buffered exporter."""

from observametrics.adapters.exporters.cloudwatch import (
    CloudWatchSender,
    labels_to_dimensions,
    to_metric_datum,
)

__all__ = ["CloudWatchSender", "labels_to_dimensions", "to_metric_datum"]
