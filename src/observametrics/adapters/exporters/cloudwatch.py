"""CloudWatch remote-send boundary for the buffered exporter.

CloudWatchSender turns observations into ``PutMetricData`` payloads and hands
them to an injected ``put_metric_data`` callable, typically the bound method
of an SDK client built from ``ExporterConfig.client_kwargs()``. Without one,
payloads are logged at DEBUG level and dropped.

Example:
    ```python
    client = boto3.client("cloudwatch", **config.client_kwargs())
    sender = CloudWatchSender(config, put_metric_data=client.put_metric_data)
    exporter = BufferedExporter(config, sender)
    ```
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from observametrics.core.config import ExporterConfig
from observametrics.core.models import MetricObservation

logger = logging.getLogger(__name__)

PutMetricData = Callable[..., Any]


def labels_to_dimensions(labels: dict[str, str]) -> list[dict[str, str]]:
    """Convert metric labels to CloudWatch dimensions.

    Args:
        labels: Metric labels.

    Returns:
        List of ``{"Name": ..., "Value": ...}`` dicts in label order.
    """
    return [{"Name": name, "Value": value} for name, value in labels.items()]


def to_metric_datum(
    observation: MetricObservation, unit: str = "Count"
) -> dict[str, Any]:
    """Convert one observation to a CloudWatch ``MetricDatum``.

    Args:
        observation: The observation to convert.
        unit: CloudWatch unit (default: "Count").

    Returns:
        Dict accepted in the ``MetricData`` list of ``PutMetricData``.
    """
    return {
        "MetricName": observation.name,
        "Value": observation.value,
        "Timestamp": datetime.fromtimestamp(observation.timestamp, tz=UTC),
        "Dimensions": labels_to_dimensions(observation.labels),
        "Unit": unit,
    }


class CloudWatchSender:
    """MetricSenderPort implementation producing PutMetricData payloads."""

    def __init__(
        self,
        config: ExporterConfig,
        put_metric_data: PutMetricData | None = None,
        unit: str = "Count",
    ) -> None:
        """Initialize the sender.

        Args:
            config: Exporter settings; ``namespace`` and ``batch_size`` are used.
            put_metric_data: Sync or async callable taking ``Namespace`` and
                ``MetricData`` keyword arguments. None logs payloads instead.
            unit: CloudWatch unit applied to every datum.
        """
        self.config = config
        self.put_metric_data = put_metric_data
        self.unit = unit

    def payloads(self, batch: Sequence[MetricObservation]) -> list[dict[str, Any]]:
        """Split a batch into PutMetricData payloads of at most batch_size."""
        size = self.config.batch_size
        return [
            {
                "Namespace": self.config.namespace,
                "MetricData": [
                    to_metric_datum(obs, self.unit) for obs in batch[i : i + size]
                ],
            }
            for i in range(0, len(batch), size)
        ]

    async def send(self, batch: Sequence[MetricObservation]) -> None:
        """Deliver the batch, raising whatever the client raises."""
        for payload in self.payloads(batch):
            if self.put_metric_data is None:
                logger.debug(
                    "CloudWatch payload for %s: %d datums",
                    payload["Namespace"],
                    len(payload["MetricData"]),
                )
                continue
            if inspect.iscoroutinefunction(self.put_metric_data):
                await self.put_metric_data(**payload)
            else:
                # Sync clients run in a worker thread
                await asyncio.to_thread(self.put_metric_data, **payload)
