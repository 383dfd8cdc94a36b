"""Real-time CLI dashboard for gateway monitoring."""

from datetime import datetime
from threading import Lock

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import Config
from core.request_types import AggregateHealth, HealthStatus, OverallStatus
from ui.log_utils import write_cli_log, write_error_log

console = Console()

HEALTH_STYLES = {
    "healthy": "green",
    "degraded": "yellow",
    "unhealthy": "red",
    "unreachable": "red",
}


def status_style(status: int) -> str:
    if status >= 500:
        return "red"
    if status >= 400:
        return "yellow"
    return "green"


class RequestInfo:
    """Info about a single proxied request."""

    def __init__(
        self,
        upstream: str,
        method: str,
        path: str,
        status: int,
        elapsed_ms: float,
        timestamp: datetime,
    ):
        self.upstream = upstream
        self.method = method
        self.path = path[:60] + "..." if len(path) > 60 else path
        self.status = status
        self.elapsed_ms = elapsed_ms
        self.timestamp = timestamp


class UpstreamStats:
    """Running counters for one upstream."""

    def __init__(self, base_url: str):
        self.base_url = base_url
        self.requests = 0
        self.last_status: int | None = None
        self.health: HealthStatus | None = None


class Dashboard:
    """Real-time dashboard showing upstream traffic, health and errors."""

    def __init__(self, config: Config):
        self.config = config
        self._lock = Lock()
        self._upstreams = {
            upstream.name: UpstreamStats(upstream.base_url) for upstream in config.upstreams
        }
        self._recent: list[RequestInfo] = []
        self._max_recent = 8
        self._rejected = 0
        self._errors: list[str] = []
        self._overall: OverallStatus | None = None
        self._live: Live | None = None

    def start(self) -> "Dashboard":
        """Start the live dashboard."""
        self._live = Live(
            self._build_layout(),
            console=console,
            refresh_per_second=4,
            screen=False,
        )
        self._live.start()
        return self

    def stop(self) -> None:
        """Stop the live dashboard."""
        if self._live:
            self._live.stop()

    def log_request(
        self,
        upstream: str,
        method: str,
        path: str,
        status: int,
        elapsed_ms: float,
    ) -> None:
        """Log a request forwarded to an upstream."""
        with self._lock:
            stats = self._upstreams.get(upstream)
            if stats is not None:
                stats.requests += 1
                stats.last_status = status
            self._recent.insert(
                0, RequestInfo(upstream, method, path, status, elapsed_ms, datetime.now())
            )
            self._recent = self._recent[: self._max_recent]
            self._refresh()
            write_cli_log(
                "PROXY", f"{method} {path}", upstream=upstream, status=status, ms=f"{elapsed_ms:.1f}"
            )

    def log_rejected(self, client_key: str, path: str) -> None:
        """Log a rate-limited request."""
        with self._lock:
            self._rejected += 1
            self._refresh()
            write_cli_log("RATE_LIMIT", path, client=client_key)

    def log_error(self, route: str, status: int, message: str) -> None:
        """Log an error."""
        with self._lock:
            first_line = message.splitlines()[0] if message else ""
            truncated = first_line[:50] + "..." if len(first_line) > 50 else first_line
            self._errors.insert(0, f"{route} {status}: {truncated}")
            self._errors = self._errors[:3]
            self._refresh()
            write_cli_log("ERROR", first_line[:200], route=route, status=status)
            write_error_log(route, status, message)

    def log_health(self, aggregate: AggregateHealth) -> None:
        """Record the latest health aggregation."""
        with self._lock:
            self._overall = aggregate.status
            for report in aggregate.reports:
                stats = self._upstreams.get(report.service_name)
                if stats is not None:
                    stats.health = report.status
            self._refresh()
            write_cli_log("HEALTH", aggregate.status.value)

    def _refresh(self) -> None:
        """Refresh the display."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Layout:
        """Build the dashboard layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=5),
        )

        layout["body"].split_row(
            Layout(name="upstreams", ratio=1),
            Layout(name="requests", ratio=2),
        )

        layout["header"].update(self._build_header())
        layout["upstreams"].update(self._build_upstreams_panel())
        layout["requests"].update(self._build_requests_panel())
        layout["footer"].update(self._build_footer())

        return layout

    def _build_header(self) -> Panel:
        """Build header with stats."""
        stats = Text()
        stats.append("Service Gateway", style="bold cyan")
        stats.append("  |  ")
        total = sum(s.requests for s in self._upstreams.values())
        stats.append(f"Proxied: {total}", style="blue")
        stats.append("  |  ")
        stats.append(f"Rate limited: {self._rejected}", style="magenta")
        stats.append("  |  ")
        if self._overall is not None:
            stats.append(f"Health: {self._overall.value}", style=HEALTH_STYLES[self._overall.value])
            stats.append("  |  ")
        stats.append(f"Port: {self.config.proxy.port}", style="dim")

        return Panel(stats, style="cyan")

    def _build_upstreams_panel(self) -> Panel:
        """Build per-upstream table."""
        table = Table(show_header=True, header_style="bold", expand=True, box=None)
        table.add_column("Upstream")
        table.add_column("Requests", justify="right")
        table.add_column("Last")
        table.add_column("Health")

        for name, stats in self._upstreams.items():
            last = (
                Text(str(stats.last_status), style=status_style(stats.last_status))
                if stats.last_status is not None
                else Text("—", style="dim")
            )
            health = (
                Text(stats.health.value, style=HEALTH_STYLES[stats.health.value])
                if stats.health is not None
                else Text("unknown", style="dim")
            )
            table.add_row(name, str(stats.requests), last, health)

        return Panel(table, title="[blue]Upstreams[/blue]", border_style="blue")

    def _build_requests_panel(self) -> Panel:
        """Build recent requests panel."""
        if self._recent:
            table = Table(show_header=True, header_style="bold", expand=True, box=None)
            table.add_column("Time", style="dim", width=8)
            table.add_column("Upstream", width=10)
            table.add_column("Request", ratio=2)
            table.add_column("Status", width=6)
            table.add_column("ms", justify="right", width=8)

            for info in self._recent:
                table.add_row(
                    info.timestamp.strftime("%H:%M:%S"),
                    info.upstream,
                    f"{info.method} {info.path}",
                    Text(str(info.status), style=status_style(info.status)),
                    f"{info.elapsed_ms:.1f}",
                )
            content = table
        else:
            content = Text("Waiting for requests...", style="dim")

        return Panel(content, title="[magenta]Recent requests[/magenta]", border_style="magenta")

    def _build_footer(self) -> Panel:
        """Build footer with errors and help."""
        if self._errors:
            error_text = Text()
            for err in self._errors:
                error_text.append("! ", style="red bold")
                error_text.append(err + "\n", style="red")
            content = error_text
        else:
            content = Text(
                f"Listening on http://{self.config.proxy.host}:{self.config.proxy.port}  "
                "(health: /health)",
                style="dim",
            )

        return Panel(content, title="[dim]Status[/dim]", border_style="dim")


class ConsoleLogger:
    """Line-oriented request logger for non-interactive runs."""

    def log_request(
        self,
        upstream: str,
        method: str,
        path: str,
        status: int,
        elapsed_ms: float,
    ) -> None:
        console.print(
            f"[dim]{datetime.now():%H:%M:%S}[/dim] [blue]{upstream}[/blue] {method} {path} "
            f"[{status_style(status)}]{status}[/] [dim]{elapsed_ms:.1f}ms[/dim]",
            highlight=False,
        )
        write_cli_log(
            "PROXY", f"{method} {path}", upstream=upstream, status=status, ms=f"{elapsed_ms:.1f}"
        )

    def log_rejected(self, client_key: str, path: str) -> None:
        console.print(f"[magenta]rate limited[/magenta] {client_key} {path}", highlight=False)
        write_cli_log("RATE_LIMIT", path, client=client_key)

    def log_error(self, route: str, status: int, message: str) -> None:
        first_line = message.splitlines()[0] if message else ""
        console.print(f"[red][ERROR][/red] {route} {status}: {first_line}", highlight=False)
        write_cli_log("ERROR", first_line[:200], route=route, status=status)
        write_error_log(route, status, message)

    def log_health(self, aggregate: AggregateHealth) -> None:
        style = HEALTH_STYLES[aggregate.status.value]
        console.print(f"health [{style}]{aggregate.status.value}[/{style}]", highlight=False)
        write_cli_log("HEALTH", aggregate.status.value)
