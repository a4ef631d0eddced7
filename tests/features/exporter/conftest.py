"""BDD step definitions for buffered export features."""

import asyncio
from dataclasses import dataclass
from typing import Any

import pytest
from pytest_bdd import given, parsers, then, when

from observametrics.core.config import ExporterConfig
from observametrics.core.exporter import BufferedExporter


@dataclass
class ExportScenarioContext:
    """State shared between the steps of one scenario."""

    sender: Any = None
    exporter: BufferedExporter | None = None
    exported: int = 0
    flush_error: BaseException | None = None


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


async def _export(ctx: ExportScenarioContext, count: int) -> None:
    for _ in range(count):
        ctx.exporter.export_metric(f"m{ctx.exported}", 1.0)
        ctx.exported += 1
    # Let a size-triggered flush run before the loop closes
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def ctx() -> ExportScenarioContext:
    """Fresh scenario context for each test."""
    return ExportScenarioContext()


# === Given ===
@given("a recording sender")
def given_recording_sender(ctx: ExportScenarioContext, make_sender) -> None:
    ctx.sender = make_sender()


@given(parsers.parse("a sender that fails {n:d} time"))
def given_failing_sender(ctx: ExportScenarioContext, make_sender, n: int) -> None:
    ctx.sender = make_sender(fail_times=n)


@given(parsers.parse("an exporter with batch size {size:d}"))
def given_exporter(ctx: ExportScenarioContext, size: int) -> None:
    config = ExporterConfig(namespace="Test", batch_size=size)
    ctx.exporter = BufferedExporter(config, ctx.sender)


# === When ===
@when(parsers.parse("{n:d} observations are exported inside the event loop"))
def when_observations_exported(ctx: ExportScenarioContext, n: int) -> None:
    run_async(_export(ctx, n))


@when("one more observation is exported inside the event loop")
def when_one_more_exported(ctx: ExportScenarioContext) -> None:
    run_async(_export(ctx, 1))


@when("the exporter is flushed")
def when_flushed(ctx: ExportScenarioContext) -> None:
    try:
        run_async(ctx.exporter.flush())
    except ConnectionError as e:
        ctx.flush_error = e


@when("the exporter buffer is cleared")
def when_buffer_cleared(ctx: ExportScenarioContext) -> None:
    ctx.exporter.clear_buffer()


# === Then ===
@then(parsers.re(r"the sender received (?P<n>\d+) batch(es)?"))
def then_batches(ctx: ExportScenarioContext, n: str) -> None:
    assert len(ctx.sender.batches) == int(n)


@then(parsers.parse('the last batch holds "{names}"'))
def then_last_batch(ctx: ExportScenarioContext, names: str) -> None:
    expected = [name.strip() for name in names.split(",")]
    assert [obs.name for obs in ctx.sender.batches[-1]] == expected


@then("the exporter buffer is empty")
def then_buffer_empty(ctx: ExportScenarioContext) -> None:
    assert ctx.exporter.get_buffer_size() == 0


@then(parsers.parse("the exporter buffer holds {n:d} observations"))
def then_buffer_holds(ctx: ExportScenarioContext, n: int) -> None:
    assert ctx.exporter.get_buffer_size() == n


@then(parsers.parse('the flush failed with "{message}"'))
def then_flush_failed(ctx: ExportScenarioContext, message: str) -> None:
    assert ctx.flush_error is not None
    assert str(ctx.flush_error) == message
