"""Shared test fixtures for all test modules."""

import asyncio
import time
from collections.abc import AsyncGenerator, Callable, Sequence

import pytest

from observametrics.core.config import ExporterConfig, HttpMetricsConfig
from observametrics.core.exporter import BufferedExporter
from observametrics.core.models import MetricObservation
from observametrics.core.registry import MetricRegistry

try:
    import httpx
except ImportError:
    httpx = None


class RecordingSender:
    """MetricSenderPort test double that records delivered batches.

    Fails the first ``fail_times`` sends with ConnectionError. Each send
    first waits ``delay`` seconds.
    """

    def __init__(self, fail_times: int = 0, delay: float = 0.0) -> None:
        self.batches: list[list[MetricObservation]] = []
        self.calls = 0
        self.fail_times = fail_times
        self.delay = delay

    async def send(self, batch: Sequence[MetricObservation]) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("backend unavailable")
        self.batches.append(list(batch))

    @property
    def sent(self) -> list[MetricObservation]:
        """Every delivered observation, in delivery order."""
        return [obs for batch in self.batches for obs in batch]


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.005)
    return True


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Fixture polling a predicate until it holds, for worker-thread flushes."""
    return _wait_until


@pytest.fixture
def make_sender() -> type[RecordingSender]:
    """Fixture providing the RecordingSender class for custom failure counts."""
    return RecordingSender


@pytest.fixture
def sender() -> RecordingSender:
    """Fixture providing a sender that always succeeds."""
    return RecordingSender()


@pytest.fixture
def exporter_config() -> ExporterConfig:
    """Exporter config with a small batch and a timer that never fires in tests."""
    return ExporterConfig(namespace="Test/App", batch_size=5, flush_interval_ms=600000)


@pytest.fixture
async def exporter(
    exporter_config: ExporterConfig, sender: RecordingSender
) -> AsyncGenerator[BufferedExporter]:
    """Fixture providing an exporter created inside the running event loop."""
    exporter = BufferedExporter(exporter_config, sender)
    yield exporter
    exporter.stop()


@pytest.fixture
def registry() -> MetricRegistry:
    """Fixture providing an empty registry with its own CollectorRegistry."""
    return MetricRegistry()


@pytest.fixture
def http_registry(registry: MetricRegistry) -> MetricRegistry:
    """Fixture providing a registry holding the default HTTP primitives."""
    for definition in HttpMetricsConfig().definitions():
        registry.register(definition)
    return registry


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""
    from observametrics.adapters.frameworks.asgi import Receive, Scope, Send

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        """Simple ASGI app that returns 200 OK."""
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """
    if httpx is None:
        pytest.skip("httpx not installed")

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client


@pytest.fixture
def asgi_send_capture():
    """Fixture providing an ASGI send callable and the messages it received."""
    messages: list[dict] = []

    async def send(message: dict) -> None:
        messages.append(message)

    return send, messages
