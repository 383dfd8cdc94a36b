"""Routing orchestration for proxied requests."""

from starlette.responses import Response

from core.exceptions import RateLimitedError, RequestTooLargeError, RouteNotFoundError
from core.protocols import RequestLogger
from core.request_types import ProxiedRequest
from core.router import PathRouter, RouteNotFound
from services.rate_limit import RateLimiter
from services.upstream import UpstreamClient


class RoutingService:
    """Run limiter, router and forwarder for a single request.

    Failures surface as GatewayError subclasses; the app turns them into
    error responses.
    """

    def __init__(
        self,
        router: PathRouter,
        forwarder: UpstreamClient,
        logger: RequestLogger,
        limiter: RateLimiter | None = None,
        max_body_bytes: int | None = None,
        trust_forwarded_for: bool = False,
    ) -> None:
        self._router = router
        self._forwarder = forwarder
        self._logger = logger
        self._limiter = limiter
        self._max_body_bytes = max_body_bytes
        self._trust_forwarded_for = trust_forwarded_for

    def client_key(self, request: ProxiedRequest) -> str:
        """Remote address, or the first X-Forwarded-For hop when trusted."""
        if self._trust_forwarded_for:
            forwarded = request.header("x-forwarded-for")
            if forwarded and forwarded.split(",")[0].strip():
                return forwarded.split(",")[0].strip()
        return request.client_address

    async def handle(self, request: ProxiedRequest) -> Response:
        """Admit, route and forward the request."""
        decision = None
        if self._limiter is not None:
            client_key = self.client_key(request)
            decision = self._limiter.check(client_key)
            if not decision.allowed:
                self._logger.log_rejected(client_key, request.path)
                raise RateLimitedError(
                    "Too many requests from this client, please try again later.",
                    retry_after=decision.retry_after,
                )

        self._check_size(request)

        match = self._router.resolve(request.path)
        if isinstance(match, RouteNotFound):
            raise RouteNotFoundError("Endpoint not found")

        response = await self._forwarder.forward(request, match)
        if decision is not None:
            response.headers["x-ratelimit-limit"] = str(decision.limit)
            response.headers["x-ratelimit-remaining"] = str(decision.remaining)
        return response

    def _check_size(self, request: ProxiedRequest) -> None:
        if self._max_body_bytes is None:
            return
        content_length = request.header("content-length")
        if content_length is None:
            return
        try:
            size = int(content_length)
        except ValueError:
            return
        if size > self._max_body_bytes:
            raise RequestTooLargeError("Request body too large")
