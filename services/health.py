"""Concurrent health aggregation across upstream services."""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

import httpx

from core.registry import Upstream, UpstreamRegistry
from core.request_types import AggregateHealth, HealthReport, HealthStatus, OverallStatus


class HealthAggregator:
    """Fan out one health check per upstream and join the results.

    Checks run concurrently, each bounded by ``timeout``, so the aggregate is
    ready after roughly the slowest check and never after the sum of them. A
    failing check is reported as data; it never raises.
    """

    def __init__(
        self,
        registry: UpstreamRegistry,
        clients: dict[str, httpx.AsyncClient],
        timeout: float,
        self_check: Callable[[], bool] | None = None,
    ) -> None:
        self._registry = registry
        self._clients = clients
        self._timeout = timeout
        self._self_check = self_check or (lambda: True)

    async def check_all(self) -> AggregateHealth:
        """Check every upstream concurrently and derive the overall status."""
        reports = await asyncio.gather(*(self.check(upstream) for upstream in self._registry))
        return AggregateHealth(
            status=self._overall(reports),
            checked_at=datetime.now(UTC),
            reports=list(reports),
        )

    async def check(self, upstream: Upstream) -> HealthReport:
        """Check a single upstream's health endpoint."""
        start = time.perf_counter()
        client = self._clients.get(upstream.name)
        if client is None or client.is_closed:
            return self._report(upstream, HealthStatus.UNREACHABLE, start, error="client closed")

        try:
            response = await asyncio.wait_for(
                client.get(upstream.health_path, timeout=self._timeout),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return self._report(upstream, HealthStatus.UNREACHABLE, start, error="timeout")
        except httpx.HTTPError as e:
            return self._report(upstream, HealthStatus.UNREACHABLE, start, error=type(e).__name__)

        status = HealthStatus.HEALTHY if response.is_success else HealthStatus.UNHEALTHY
        return self._report(upstream, status, start, status_code=response.status_code)

    def self_check(self) -> bool:
        """Gateway's own readiness: upstreams configured and pools usable."""
        return len(self._registry) > 0 and self._self_check()

    def _overall(self, reports: list[HealthReport]) -> OverallStatus:
        if not self.self_check():
            return OverallStatus.UNHEALTHY
        if all(report.status is HealthStatus.HEALTHY for report in reports):
            return OverallStatus.HEALTHY
        return OverallStatus.DEGRADED

    def _report(
        self,
        upstream: Upstream,
        status: HealthStatus,
        start: float,
        *,
        status_code: int | None = None,
        error: str | None = None,
    ) -> HealthReport:
        return HealthReport(
            service_name=upstream.name,
            status=status,
            latency_ms=(time.perf_counter() - start) * 1000,
            checked_at=datetime.now(UTC),
            status_code=status_code,
            error=error,
        )
