"""Custom exception hierarchy for the service gateway."""


class GatewayError(Exception):
    """Base exception for all gateway errors.

    Attributes:
        message: Human-readable message, safe to return to clients
        code: Stable machine-readable error code
        status_code: HTTP status code surfaced to the client
    """

    code = "GATEWAY_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(GatewayError):
    """Raised when configuration is missing or invalid."""

    code = "CONFIGURATION_ERROR"


class RouteNotFoundError(GatewayError):
    """No route rule matches the request path."""

    code = "ROUTE_NOT_FOUND"
    status_code = 404


class UpstreamUnavailableError(GatewayError):
    """Raised when an upstream cannot be reached or does not answer in time.

    Attributes:
        upstream: Upstream service name (e.g., 'user', 'product')
        elapsed_ms: Time spent before giving up
    """

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str, upstream: str, elapsed_ms: float = 0.0) -> None:
        super().__init__(message)
        self.upstream = upstream
        self.elapsed_ms = elapsed_ms


class RateLimitedError(GatewayError):
    """Client exceeded its request budget for the current window."""

    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class RequestTooLargeError(GatewayError):
    """Request body exceeds size limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
