"""Shared request and report data types."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class ProxiedRequest:
    """Inbound request as seen by the forwarder. Lives for one call only."""

    method: str
    path: str
    query: str
    headers: list[tuple[str, str]]
    client_address: str
    body: AsyncIterator[bytes] | None = None
    scheme: str = "http"
    host: str = ""

    def header(self, name: str) -> str | None:
        """Return the first value of a header, case-insensitive."""
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    @property
    def target(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def has_body(self) -> bool:
        """Whether the client declared a body to forward."""
        if self.body is None:
            return False
        if self.header("transfer-encoding") is not None:
            return True
        content_length = self.header("content-length")
        return content_length is not None and content_length.strip() != "0"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNREACHABLE = "unreachable"


class OverallStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class HealthReport:
    """Result of a single upstream health check."""

    service_name: str
    status: HealthStatus
    latency_ms: float
    checked_at: datetime
    status_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = {
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
            "checked_at": self.checked_at.isoformat(),
            "status_code": self.status_code,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class AggregateHealth:
    """Composite health of the gateway and all upstreams."""

    status: OverallStatus
    checked_at: datetime
    reports: list[HealthReport] = field(default_factory=list)

    def report_for(self, service_name: str) -> HealthReport | None:
        return next((r for r in self.reports if r.service_name == service_name), None)
