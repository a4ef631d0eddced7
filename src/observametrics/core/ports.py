"""Port interfaces for the remote-send boundary and diagnostic hooks.

These protocols define the contracts adapters must implement. The core
depends only on these interfaces, not on a cloud SDK.
"""

from collections.abc import Callable, Sequence
from typing import Protocol, runtime_checkable

from observametrics.core.models import MetricObservation


@runtime_checkable
class MetricSenderPort(Protocol):
    """Port for delivering a batch of observations to a remote backend.

    Implementations may fail (network, throttling, auth). The exporter
    requeues the batch on any exception and retries on the next trigger.
    Examples: CloudWatchSender.
    """

    async def send(self, batch: Sequence[MetricObservation]) -> None:
        """Deliver one batch, raising on failure."""
        ...


# Called with (metric name, expected kind) when an application call names
# a metric that is not registered as that kind.
MissingMetricHook = Callable[[str, str], None]

# Called with the exception raised by an automatic (timer or size) flush.
FlushErrorHook = Callable[[BaseException], None]
