"""FastAPI application factory."""

import time
import traceback
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.handlers import (
    SERVICE_VERSION,
    error_response,
    handle_health,
    handle_live,
    handle_proxy,
    handle_ready,
    handle_root,
)
from api.middleware import SecurityHeadersMiddleware
from core.config import Config
from core.exceptions import GatewayError
from core.headers import HeaderBuilder
from core.protocols import RequestLogger
from core.registry import UpstreamRegistry
from core.router import PathRouter, RouteTable
from services.health import HealthAggregator
from services.rate_limit import RateLimiter
from services.routing_service import RoutingService
from services.upstream import UpstreamClient, create_upstream_clients

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    config: Config,
    logger: RequestLogger,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Registry and route table are built here, before any serving starts, so a
    bad upstream reference raises ConfigurationError to the caller.
    """
    registry = UpstreamRegistry.from_config(config)
    route_table = RouteTable.from_config(config, registry)
    router = PathRouter(route_table, registry)
    limiter = None
    if config.rate_limit.enabled:
        limiter = RateLimiter(
            window_ms=config.rate_limit.window_ms,
            max_requests=config.rate_limit.max_requests,
            max_buckets=config.rate_limit.max_buckets,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        clients = create_upstream_clients(registry, config, transport)
        forwarder = UpstreamClient(
            clients,
            logger,
            HeaderBuilder(),
            request_timeout=config.proxy.request_timeout,
        )
        app.state.routing_service = RoutingService(
            router=router,
            forwarder=forwarder,
            logger=logger,
            limiter=limiter,
            max_body_bytes=config.proxy.max_body_bytes,
            trust_forwarded_for=config.rate_limit.trust_forwarded_for,
        )
        app.state.health_aggregator = HealthAggregator(
            registry,
            clients,
            timeout=config.health.timeout,
            self_check=forwarder.is_open,
        )
        try:
            yield
        finally:
            for client in clients.values():
                await client.aclose()

    app = FastAPI(
        title="Service Gateway",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api-docs",
        redoc_url=None,
    )
    app.state.registry = registry
    app.state.route_table = route_table
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.proxy.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        return error_response(exc, request)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.log_error(
            "gateway",
            500,
            f"{request.method} {request.url.path}: "
            + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {"code": "INTERNAL_ERROR", "message": "Something went wrong"},
                "path": request.url.path,
                "method": request.method,
            },
        )

    @app.get("/")
    async def root(request: Request):
        return await handle_root(request)

    @app.get("/health")
    async def health(request: Request):
        return await handle_health(request, logger)

    @app.get("/health/live")
    async def health_live(request: Request):
        return await handle_live(request)

    @app.get("/health/ready")
    async def health_ready(request: Request):
        return await handle_ready(request)

    @app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def proxy(request: Request):
        return await handle_proxy(request)

    return app
