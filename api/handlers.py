"""FastAPI route handlers."""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable
from datetime import UTC, datetime
from typing import Any, TypeVar

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from core.exceptions import GatewayError, RateLimitedError
from core.protocols import RequestLogger
from core.request_types import AggregateHealth, OverallStatus, ProxiedRequest
from core.router import RouteTable
from services.health import HealthAggregator

SERVICE_NAME = "service-gateway"
SERVICE_VERSION = "1.0.0"
# nginx convention for "client closed request"
CLIENT_CLOSED_REQUEST = 499

T = TypeVar("T")


def build_proxied_request(request: Request, body_read: asyncio.Event | None = None) -> ProxiedRequest:
    """Capture the inbound request without reading its body.

    ``body_read`` is set once the forwarder has drained the request body.
    """
    body = request.stream()
    if body_read is not None:
        body = _signal_when_drained(body, body_read)
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    return ProxiedRequest(
        method=request.method,
        path=path,
        query=request.url.query,
        headers=list(request.headers.items()),
        client_address=request.client.host if request.client else "unknown",
        body=body,
        scheme=request.url.scheme,
        host=request.headers.get("host", ""),
    )


def error_response(error: GatewayError, request: Request) -> JSONResponse:
    """Render a gateway error; only the public message reaches the client."""
    headers = None
    if isinstance(error, RateLimitedError):
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(
        status_code=error.status_code,
        content={
            "error": {"code": error.code, "message": error.message},
            "path": request.url.path,
            "method": request.method,
        },
        headers=headers,
    )


async def handle_proxy(request: Request) -> Response:
    """Forward a request through the routing service.

    A client that disconnects before the upstream answers cancels the
    outbound call and gets 499.
    """
    routing_service = request.app.state.routing_service
    body_read = asyncio.Event()
    proxied = build_proxied_request(request, body_read)
    if not proxied.has_body:
        body_read.set()
    try:
        response = await _cancel_on_disconnect(
            request, routing_service.handle(proxied), listen_after=body_read
        )
    except ClientDisconnect:
        response = None
    if response is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return response


async def handle_health(request: Request, logger: RequestLogger) -> Response:
    """Aggregate upstream health; cancelled if the client goes away."""
    aggregator: HealthAggregator = request.app.state.health_aggregator
    aggregate = await _cancel_on_disconnect(request, aggregator.check_all())
    if aggregate is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    logger.log_health(aggregate)
    status_code = 503 if aggregate.status is OverallStatus.UNHEALTHY else 200
    return JSONResponse(status_code=status_code, content=health_payload(aggregate, request))


def health_payload(aggregate: AggregateHealth, request: Request) -> dict[str, Any]:
    return {
        "status": aggregate.status.value,
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": aggregate.checked_at.isoformat(),
        "uptime": _uptime(request),
        "upstreams": {report.service_name: report.to_dict() for report in aggregate.reports},
    }


async def handle_live(request: Request) -> Response:
    return JSONResponse(
        {
            "status": "alive",
            "service": SERVICE_NAME,
            "timestamp": _now(),
            "uptime": _uptime(request),
        }
    )


async def handle_ready(request: Request) -> Response:
    aggregator: HealthAggregator = request.app.state.health_aggregator
    ready = aggregator.self_check()
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not ready",
            "service": SERVICE_NAME,
            "timestamp": _now(),
        },
    )


async def handle_root(request: Request) -> Response:
    """Describe the gateway and its routes."""
    table: RouteTable = request.app.state.route_table
    registry = request.app.state.registry
    endpoints: dict[str, list[str]] = {}
    for rule in table.rules:
        endpoints.setdefault(rule.upstream_name, []).append(rule.match_prefix)
    return JSONResponse(
        {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "timestamp": _now(),
            "health": "/health",
            "endpoints": endpoints,
            "services": {upstream.name: upstream.base_url for upstream in registry},
        }
    )


async def _cancel_on_disconnect(
    request: Request,
    awaitable: Awaitable[T],
    listen_after: asyncio.Event | None = None,
) -> T | None:
    """Await ``awaitable``, cancelling it if the client disconnects first.

    Returns None on disconnect. The receive channel is only watched once
    ``listen_after`` is set, so request body messages still reach the body
    stream.
    """
    task = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request, listen_after))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if task.done():
            return task.result()
        return None
    finally:
        pending = [t for t in (task, watcher) if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.wait(pending)


async def _wait_for_disconnect(request: Request, listen_after: asyncio.Event | None) -> None:
    if listen_after is not None:
        await listen_after.wait()
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _signal_when_drained(
    body: AsyncIterator[bytes], drained: asyncio.Event
) -> AsyncIterator[bytes]:
    async for chunk in body:
        yield chunk
    drained.set()


def _uptime(request: Request) -> float:
    return round(time.monotonic() - request.app.state.started_at, 3)


def _now() -> str:
    return datetime.now(UTC).isoformat()
