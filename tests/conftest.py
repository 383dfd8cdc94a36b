"""
Pytest fixtures for gateway tests
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx
import pytest

from core.config import (
    Config,
    HealthSettings,
    ProxySettings,
    RateLimitSettings,
    UpstreamSettings,
)
from core.request_types import AggregateHealth

Handler = Callable[[httpx.Request], Awaitable[httpx.Response] | httpx.Response]

USER_URL = "http://user.test:3001"
PRODUCT_URL = "http://product.test:3002"
ORDER_URL = "http://order.test:3003"


class RecordingLogger:
    """RequestLogger that keeps every call for assertions."""

    def __init__(self):
        self.requests: list[tuple[str, str, str, int]] = []
        self.rejected: list[tuple[str, str]] = []
        self.errors: list[tuple[str, int, str]] = []
        self.health: list[AggregateHealth] = []

    def log_request(self, upstream, method, path, status, elapsed_ms):
        self.requests.append((upstream, method, path, status))

    def log_rejected(self, client_key, path):
        self.rejected.append((client_key, path))

    def log_error(self, route, status, message):
        self.errors.append((route, status, message))

    def log_health(self, aggregate):
        self.health.append(aggregate)


class MockUpstreams:
    """In-process upstream services keyed by host, behind httpx.MockTransport.

    Hosts without a handler behave like a stopped process (connection refused).
    """

    def __init__(self):
        self.handlers: dict[str, Handler] = {}
        self.received: list[httpx.Request] = []

    def serve(self, host: str, handler: Handler) -> None:
        self.handlers[host] = handler

    def stop(self, host: str) -> None:
        self.handlers.pop(host, None)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.received.append(request)
        handler = self.handlers.get(request.url.host)
        if handler is None:
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)
        response = handler(request)
        if asyncio.iscoroutine(response):
            response = await response
        return _as_stream(response)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


def _as_stream(response: httpx.Response) -> httpx.Response:
    """Re-wrap a pre-read response so it streams like one off the wire.

    ``httpx.Response(content=...)`` reads its own body on construction, and a
    read response can no longer be relayed with ``aiter_raw``. The raw, still
    encoded bytes are taken from the original stream.
    """
    if not isinstance(response.stream, httpx.ByteStream):
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(b"".join(response.stream)),
    )


def echo_handler(service: str) -> Handler:
    """Upstream that reports what it received."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/health":
            return httpx.Response(200, json={"status": "healthy", "service": service})
        return httpx.Response(
            200,
            json={
                "service": service,
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query.decode(),
                "body": request.content.decode(),
            },
        )

    return handler


def make_config(**overrides) -> Config:
    """Two upstreams (user, product), rate limiting off unless overridden."""
    values = {
        "upstreams": [
            UpstreamSettings(name="user", base_url=USER_URL, prefixes=["/api/users", "/api/auth"]),
            UpstreamSettings(
                name="product",
                base_url=PRODUCT_URL,
                prefixes=["/api/products", "/api/categories", "/api/inventory"],
            ),
        ],
        "rate_limit": RateLimitSettings(enabled=False),
        "health": HealthSettings(timeout=0.5),
        "proxy": ProxySettings(request_timeout=1.0, connect_timeout=0.5),
    }
    values.update(overrides)
    return Config(**values)


@pytest.fixture
def logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def upstreams() -> MockUpstreams:
    mock = MockUpstreams()
    mock.serve("user.test", echo_handler("user"))
    mock.serve("product.test", echo_handler("product"))
    return mock


@pytest.fixture
def config() -> Config:
    return make_config()
