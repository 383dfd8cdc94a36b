"""Shared protocol definitions."""

from typing import Protocol

from core.request_types import AggregateHealth


class RequestLogger(Protocol):
    """Protocol for request logging (Dashboard, ConsoleLogger)."""

    def log_request(
        self,
        upstream: str,
        method: str,
        path: str,
        status: int,
        elapsed_ms: float,
    ) -> None: ...
    def log_rejected(self, client_key: str, path: str) -> None: ...
    def log_error(self, route: str, status: int, message: str) -> None: ...
    def log_health(self, aggregate: AggregateHealth) -> None: ...
