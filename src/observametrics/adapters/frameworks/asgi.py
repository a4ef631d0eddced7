"""ASGI generic adapter for metrics instrumentation.

This adapter provides framework-agnostic ASGI middleware and a stand-alone
metrics app that work with any ASGI server (uvicorn, hypercorn, daphne)
without requiring FastAPI or Django as dependencies.
"""

import json
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from observametrics.core.context import MetricsContext
from observametrics.core.models import HttpRequestMetrics
from observametrics.core.recorder import resolve_route

logger = logging.getLogger(__name__)

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]


def _route_template(scope: Scope) -> str | None:
    """Return the matched route template set by Starlette/FastAPI routing.

    Args:
        scope: ASGI scope dictionary, after the app has handled the request.

    Returns:
        Template such as ``/users/{user_id}``, or None if no route matched.
    """
    # @tra: Adapter.ASGI.Middleware.RouteTemplate
    route = scope.get("route")
    if route is None:
        return None
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    return template if isinstance(template, str) else None


def _content_length(headers: list[tuple[bytes, bytes]]) -> int | None:
    """Extract the Content-Length response header, if present and valid."""
    for name, value in headers:
        if name.lower() == b"content-length":
            try:
                return int(value)
            except ValueError:
                return None
    return None


async def _send_response(send: Send, status: int, content_type: str, body: str) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
    """
    encoded = body.encode()
    headers = [
        (b"content-type", content_type.encode()),
        (b"content-length", str(len(encoded)).encode()),
    ]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": encoded})


async def _handle_metrics_endpoint(send: Send, context: MetricsContext) -> None:
    """Render the registry and send it, or a 500 if rendering fails.

    Args:
        send: ASGI send callable for writing response.
        context: Metrics context whose registry is rendered.
    """
    # @tra: Adapter.ASGI.MetricsEndpoint
    try:
        body = context.get_metrics()
    except Exception:
        logger.exception("Error rendering metrics endpoint")
        error_body = json.dumps({"error": "Internal Server Error"})
        await _send_response(send, 500, "application/json", error_body)
        return
    await _send_response(send, 200, context.registry.content_type, body)


class ASGIMetricsMiddleware:
    """ASGI middleware that records HTTP metrics for every request.

    The middleware captures a start marker when the request arrives, times
    the response, resolves the route template, and calls the recorder once
    per request. It also serves the metrics endpoint and ties the exporter
    lifecycle to ASGI lifespan startup/shutdown events.
    """

    def __init__(
        self,
        app: ASGIApp,
        context: MetricsContext,
        serve_endpoint: bool = True,
    ) -> None:
        """Initialize the middleware with a wrapped app and metrics context.

        Args:
            app: The ASGI application to wrap.
            context: Metrics context receiving the observations.
            serve_endpoint: Answer ``context.options.endpoint`` here instead
                of passing it to the app (disable when the framework
                routes it, as the FastAPI adapter does).
        """
        self.app = app
        self.context = context
        self.serve_endpoint = serve_endpoint

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] == "lifespan":
            await self.app(scope, self._lifespan_receive(receive), send)
            return
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # @tra: Adapter.ASGI.Middleware.StartMarker
        start_time = time.perf_counter()
        captured: dict[str, Any] = {
            "status": None,
            "content_length": None,
            "body_size": 0,
        }

        async def wrapped_send(message: dict[str, Any]) -> None:
            if message["type"] == "http.response.start":
                captured["status"] = message["status"]
                captured["content_length"] = _content_length(
                    message.get("headers", [])
                )
            elif message["type"] == "http.response.body":
                captured["body_size"] += len(message.get("body", b""))
            await send(message)

        try:
            if self.serve_endpoint and scope["path"] == self.context.options.endpoint:
                await _handle_metrics_endpoint(wrapped_send, self.context)
            else:
                await self.app(scope, receive, wrapped_send)
        except Exception:
            captured["status"] = 500
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._record(scope, captured, duration_ms)

    def _record(
        self, scope: Scope, captured: dict[str, Any], duration_ms: float
    ) -> None:
        """Record metrics for the finished request."""
        if captured["status"] is None:
            return
        size = captured["content_length"]
        if size is None:
            size = captured["body_size"]
        self.context.record_http_request(
            HttpRequestMetrics(
                method=scope["method"],
                route=resolve_route(_route_template(scope), scope["path"]),
                status_code=captured["status"],
                duration_ms=duration_ms,
                response_size_bytes=size,
            )
        )

    def _lifespan_receive(self, receive: Receive) -> Receive:
        """Wrap receive so lifespan events start and stop the exporter."""

        async def wrapped_receive() -> dict[str, Any]:
            message = await receive()
            # @tra: Adapter.ASGI.Lifespan
            if message["type"] == "lifespan.startup":
                self.context.start()
            elif message["type"] == "lifespan.shutdown":
                await self.context.shutdown()
            return message

        return wrapped_receive


def create_metrics_app(context: MetricsContext) -> ASGIApp:
    """Create an ASGI app serving only the metrics endpoint.

    Args:
        context: Metrics context to render.

    Returns:
        ASGI application callable. Unknown paths answer 404.
    """

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        if scope["path"] == context.options.endpoint:
            await _handle_metrics_endpoint(send, context)
        else:
            await _send_response(send, 404, "text/plain", "Not Found")

    return app
