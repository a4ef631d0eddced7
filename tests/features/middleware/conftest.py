"""BDD step definitions for HTTP request metrics features."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from pytest_bdd import given, parsers, then, when

from observametrics.adapters.frameworks.asgi import (
    ASGIMetricsMiddleware,
    Receive,
    Scope,
    Send,
)
from observametrics.core.config import MetricsOptions
from observametrics.core.context import MetricsContext


@dataclass
class MiddlewareScenarioContext:
    """Shared state between steps in a middleware scenario."""

    context: MetricsContext | None = None
    app: Any = None
    status_code: int = 200
    responses: list[httpx.Response] = field(default_factory=list)


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


def create_test_app(ctx: MiddlewareScenarioContext) -> Any:
    """ASGI app answering with the status currently set on the scenario."""

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        await send(
            {"type": "http.response.start", "status": ctx.status_code, "headers": []}
        )
        await send({"type": "http.response.body", "body": b"OK"})

    return app


async def simulate_requests(
    ctx: MiddlewareScenarioContext, method: str, path: str, count: int = 1
) -> None:
    """Send requests through the wrapped app and keep the responses."""
    transport = httpx.ASGITransport(app=ctx.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        for _ in range(count):
            ctx.responses.append(await client.request(method, path))


@pytest.fixture
def ctx() -> MiddlewareScenarioContext:
    """Fresh scenario context for each test."""
    return MiddlewareScenarioContext()


# === Background Steps ===
@given("a metrics context without default metrics")
def given_context(ctx: MiddlewareScenarioContext) -> None:
    ctx.context = MetricsContext(MetricsOptions(enable_default_metrics=False))


@given("an ASGI app wrapped with the metrics middleware")
def given_wrapped_app(ctx: MiddlewareScenarioContext) -> None:
    ctx.app = ASGIMetricsMiddleware(create_test_app(ctx), ctx.context)


# === When ===
@when(parsers.parse('{n:d} GET requests are made to "{path}"'))
def when_n_get_requests(ctx: MiddlewareScenarioContext, n: int, path: str) -> None:
    run_async(simulate_requests(ctx, "GET", path, n))


@when(parsers.parse('a GET request to "{path}" returns status {code:d}'))
def when_request_returns_status(
    ctx: MiddlewareScenarioContext, path: str, code: int
) -> None:
    ctx.status_code = code
    run_async(simulate_requests(ctx, "GET", path))


@when("the metrics endpoint is scraped")
def when_scraped(ctx: MiddlewareScenarioContext) -> None:
    run_async(simulate_requests(ctx, "GET", "/metrics"))


# === Then ===
def _sample(
    ctx: MiddlewareScenarioContext, name: str, method: str, route: str, status: int
) -> float | None:
    labels = {"method": method, "route": route, "status_code": str(status)}
    return ctx.context.registry.collector_registry.get_sample_value(name, labels)


@then(
    parsers.parse(
        '{name} for {method} "{route}" with status {status:d} is {value:d}'
    )
)
def then_sample_value(
    ctx: MiddlewareScenarioContext,
    name: str,
    method: str,
    route: str,
    status: int,
    value: int,
) -> None:
    assert _sample(ctx, name, method, route, status) == float(value)


@then(parsers.parse('{name} for {method} "{route}" with status {status:d} is absent'))
def then_sample_absent(
    ctx: MiddlewareScenarioContext, name: str, method: str, route: str, status: int
) -> None:
    assert _sample(ctx, name, method, route, status) is None


@then(parsers.parse("the scrape status is {code:d}"))
def then_scrape_status(ctx: MiddlewareScenarioContext, code: int) -> None:
    assert ctx.responses[-1].status_code == code


@then(parsers.parse("the scrape contains the line '{line}'"))
def then_scrape_line(ctx: MiddlewareScenarioContext, line: str) -> None:
    assert line in ctx.responses[-1].text.splitlines()
