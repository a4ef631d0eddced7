"""Example FastAPI application with Prometheus metrics.

Run with:
    uvicorn examples.fastapi_example:app --reload

Endpoints:
    /users/{user_id}  - Instrumented route, recorded under its template
    /orders           - Records a custom business counter
    /health           - Excluded from HTTP metrics by default
    /metrics          - Prometheus text format

Export:
    Set CLOUDWATCH_NAMESPACE to buffer observations for CloudWatch. Without
    a client, payloads are logged at DEBUG level instead of sent.
"""

import asyncio
import logging
import os

from fastapi import FastAPI, HTTPException

from observametrics import CustomMetricDefinition, ExporterConfig, MetricsOptions
from observametrics.adapters.frameworks.fastapi import install_metrics

logging.basicConfig(level=logging.DEBUG)

namespace = os.environ.get("CLOUDWATCH_NAMESPACE")

app = FastAPI(title="Metrics Example")

metrics = install_metrics(
    app,
    MetricsOptions(
        custom_metrics=(
            CustomMetricDefinition(
                "counter", "orders_created_total", "Orders created", ("channel",)
            ),
        ),
        cloudwatch=ExporterConfig(namespace=namespace, batch_size=10)
        if namespace
        else None,
        default_labels={"service": "example"},
    ),
)


@app.get("/users/{user_id}")
async def get_user(user_id: int) -> dict[str, int]:
    """Return a user; 0 answers 404 and is counted as an error."""
    await asyncio.sleep(0.01)
    if user_id == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return {"id": user_id}


@app.post("/orders")
async def create_order() -> dict[str, str]:
    """Create an order and count it by channel."""
    metrics.increment_counter("orders_created_total", {"channel": "web"})
    return {"status": "created"}


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check, not recorded."""
    return {"status": "ok"}
