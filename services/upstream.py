"""HTTP proxying to upstream services with streaming support."""

import asyncio
import time

import httpx
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from core.config import Config
from core.exceptions import UpstreamUnavailableError
from core.headers import HeaderBuilder
from core.protocols import RequestLogger
from core.registry import UpstreamRegistry
from core.request_types import ProxiedRequest
from core.router import RouteMatch

# Default headers httpx adds to every request; only forwarded when the client sent them.
_CLIENT_DEFAULT_HEADERS = ("accept", "accept-encoding", "user-agent")
# ASGI scope key marking a response relayed from an upstream.
RELAYED_SCOPE_KEY = "gateway.relayed"


def create_upstream_clients(
    registry: UpstreamRegistry,
    config: Config,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, httpx.AsyncClient]:
    """Create one pooled client per upstream."""
    limits = httpx.Limits(
        max_connections=config.limits.max_connections,
        max_keepalive_connections=config.limits.max_keepalive_connections,
    )
    timeout = httpx.Timeout(config.proxy.request_timeout, connect=config.proxy.connect_timeout)
    return {
        upstream.name: httpx.AsyncClient(
            base_url=upstream.base_url,
            timeout=timeout,
            limits=limits,
            transport=transport,
            trust_env=False,
        )
        for upstream in registry
    }


class UpstreamResponse(StreamingResponse):
    """Relay an upstream response, closing it however the stream ends."""

    def __init__(
        self,
        upstream: httpx.Response,
        headers: list[tuple[bytes, bytes]],
        route_name: str,
        logger: RequestLogger,
    ) -> None:
        super().__init__(upstream.aiter_raw(), status_code=upstream.status_code)
        self.raw_headers = headers
        self._upstream = upstream
        self._route_name = route_name
        self._logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        scope[RELAYED_SCOPE_KEY] = True
        try:
            await super().__call__(scope, receive, send)
        except httpx.HTTPError as e:
            self._logger.log_error(self._route_name, 502, f"Upstream stream aborted: {e!r}")
            raise
        finally:
            await self._upstream.aclose()


class UpstreamClient:
    """Proxy requests to upstream services without buffering bodies."""

    def __init__(
        self,
        clients: dict[str, httpx.AsyncClient],
        logger: RequestLogger,
        header_builder: HeaderBuilder,
        request_timeout: float,
    ) -> None:
        self._clients = clients
        self._logger = logger
        self._headers = header_builder
        self._request_timeout = request_timeout

    async def forward(self, request: ProxiedRequest, match: RouteMatch) -> UpstreamResponse:
        """Send the request upstream and stream the answer back verbatim.

        Raises:
            UpstreamUnavailableError: connection refused, DNS failure or timeout
                before the upstream produced response headers.
        """
        route_name = match.upstream.name
        client = self._client_for(route_name)
        target = f"{match.path}?{request.query}" if request.query else match.path

        upstream_request = client.build_request(
            request.method,
            target,
            headers=self._headers.build_upstream_headers(request),
            content=request.body if request.has_body else None,
        )
        for name in _CLIENT_DEFAULT_HEADERS:
            if request.header(name) is None:
                upstream_request.headers.pop(name, None)

        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                client.send(upstream_request, stream=True),
                timeout=self._request_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            elapsed_ms = _elapsed_ms(start)
            self._logger.log_error(
                route_name, 503, f"Upstream timeout after {elapsed_ms:.0f}ms ({type(e).__name__})"
            )
            raise UpstreamUnavailableError(
                f"{route_name.capitalize()} service unavailable", route_name, elapsed_ms
            ) from e
        except httpx.RequestError as e:
            elapsed_ms = _elapsed_ms(start)
            self._logger.log_error(
                route_name, 503, f"Upstream connection error after {elapsed_ms:.0f}ms: {e!r}"
            )
            raise UpstreamUnavailableError(
                f"{route_name.capitalize()} service unavailable", route_name, elapsed_ms
            ) from e

        self._logger.log_request(
            route_name,
            request.method,
            request.target,
            response.status_code,
            _elapsed_ms(start),
        )
        return UpstreamResponse(
            response,
            self._headers.build_client_headers(response.headers.multi_items()),
            route_name,
            self._logger,
        )

    def is_open(self) -> bool:
        """Whether every pooled client can still accept requests."""
        return bool(self._clients) and not any(client.is_closed for client in self._clients.values())

    def _client_for(self, route_name: str) -> httpx.AsyncClient:
        """Select the pooled client for an upstream."""
        return self._clients[route_name]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
