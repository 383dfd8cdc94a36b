"""CLI entry point for service-gateway."""

import asyncio
import sys
from datetime import datetime

from rich.console import Console
from rich.table import Table

from app import create_app
from core.config import Config, config_path, load_config
from core.exceptions import ConfigurationError
from core.registry import UpstreamRegistry
from core.request_types import AggregateHealth, OverallStatus
from core.router import RouteTable
from services.health import HealthAggregator
from services.upstream import create_upstream_clients
from ui.dashboard import HEALTH_STYLES, ConsoleLogger, Dashboard
from ui.log_utils import shutdown_log_executor, write_cli_log

console = Console()


def main():
    """Main CLI entry point."""
    args = sys.argv[1:]

    if "--help" in args or "-h" in args:
        _print_help()
        return

    if "--config" in args:
        console.print(f"[bold]Config:[/bold] {config_path()}")
        return

    try:
        config = load_config()
        if "--routes" in args:
            _print_routes(config)
            return
        if "--check" in args:
            aggregate = asyncio.run(_check_health(config))
            _print_health(aggregate)
            sys.exit(0 if aggregate.status is OverallStatus.HEALTHY else 1)

        logger = ConsoleLogger() if "--no-dashboard" in args else Dashboard(config)
        app = create_app(config, logger)
    except ConfigurationError as e:
        console.print(f"[red][ERROR][/red] Invalid configuration: {e}")
        console.print(f"[dim]Edit {config_path()} or fix the environment overrides[/dim]")
        sys.exit(1)

    import uvicorn

    uvicorn_config = uvicorn.Config(
        app,
        host=config.proxy.host,
        port=config.proxy.port,
        log_level="warning",
        timeout_keep_alive=config.proxy.keep_alive_timeout,
    )
    server = uvicorn.Server(uvicorn_config)

    if isinstance(logger, Dashboard):
        logger.start()
    start_time = datetime.now()
    write_cli_log("STARTUP", "Gateway started", port=config.proxy.port)
    try:
        server.run()
    finally:
        duration = datetime.now() - start_time
        write_cli_log("SHUTDOWN", "Gateway stopped", duration=str(duration))
        shutdown_log_executor()
        if isinstance(logger, Dashboard):
            logger.stop()


async def _check_health(config: Config) -> AggregateHealth:
    """Run a single health aggregation outside the server."""
    registry = UpstreamRegistry.from_config(config)
    clients = create_upstream_clients(registry, config)
    try:
        return await HealthAggregator(registry, clients, timeout=config.health.timeout).check_all()
    finally:
        for client in clients.values():
            await client.aclose()


def _print_health(aggregate: AggregateHealth) -> None:
    table = Table(title=f"Overall: {aggregate.status.value}", title_style=HEALTH_STYLES[aggregate.status.value])
    table.add_column("Upstream", style="bold")
    table.add_column("Status")
    table.add_column("HTTP", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Error", style="dim")
    for report in aggregate.reports:
        style = HEALTH_STYLES[report.status.value]
        table.add_row(
            report.service_name,
            f"[{style}]{report.status.value}[/{style}]",
            str(report.status_code or "—"),
            f"{report.latency_ms:.0f}ms",
            report.error or "",
        )
    console.print(table)


def _print_routes(config: Config) -> None:
    registry = UpstreamRegistry.from_config(config)
    table = Table(title="Routes (evaluation order)")
    table.add_column("Prefix", style="bold")
    table.add_column("Upstream")
    table.add_column("Target")
    for rule in RouteTable.from_config(config, registry).by_precedence():
        upstream = registry.get(rule.upstream_name)
        table.add_row(
            rule.match_prefix,
            rule.upstream_name,
            f"{upstream.base_url}{rule.rewrite or rule.match_prefix}",
        )
    console.print(table)


def _print_help():
    """Print help message."""
    help_text = """
[bold cyan]Service Gateway[/bold cyan]

Routes /api/* requests to the user, product and order services.

[bold]Usage:[/bold]
    service-gateway                  Start with live dashboard
    service-gateway --no-dashboard   Start with plain console logging
    service-gateway --check          Check upstream health once
    service-gateway --routes         Show the route table
    service-gateway --config         Show config location
    service-gateway --help           Show this help

[bold]Environment:[/bold]
    GATEWAY_CONFIG_FILE, PORT, USER_SERVICE_URL, PRODUCT_SERVICE_URL,
    ORDER_SERVICE_URL, ALLOWED_ORIGINS, GATEWAY_RATE_LIMIT_MAX,
    GATEWAY_RATE_LIMIT_WINDOW_MS, GATEWAY_RATE_LIMIT_ENABLED,
    GATEWAY_HEALTH_TIMEOUT
"""
    console.print(help_text)


if __name__ == "__main__":
    main()
