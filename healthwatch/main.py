"""Entry point for the healthwatch service monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from healthwatch.config import settings
from healthwatch.health.errors import HealthwatchError
from healthwatch.health.models import HealthCheckRecord, ServiceState
from healthwatch.monitor import Monitor

console = Console()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)

STATE_STYLES = {
    ServiceState.OPERATIONAL: "green",
    ServiceState.DEGRADED: "yellow",
    ServiceState.IMPACTED: "dark_orange",
    ServiceState.INTERRUPTED: "bold red",
}


def run_server() -> None:
    """Start the FastAPI server."""
    console.print(Panel("Starting Healthwatch API Server", style="bold green"))
    uvicorn.run(
        "healthwatch.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


def run_check(service_id: str, skip_escalation: bool = False) -> int:
    """Probe one service now and print the record."""
    monitor = Monitor()
    try:
        service = monitor.get_service(service_id)
    except HealthwatchError as e:
        console.print(f"[bold red]{e}[/bold red]")
        return 1

    console.print(Panel(f"{service.display_name} — {service.endpoint.method} {service.endpoint.url}",
                        title="Health check", style="bold blue"))
    with console.status("[bold green]Probing..."):
        record = asyncio.run(monitor.run_check_for_service(service_id, skip_escalation=skip_escalation))

    if record is None:
        console.print("[yellow]Skipped: service is paused for maintenance or has no URL[/yellow]")
        return 0

    console.print(_record_table(record))
    updated = monitor.get_service(service_id)
    console.print(
        f"\n[dim]Service state: {updated.state.value} | importance: {updated.importance.value}"
        f"{' (pinned)' if updated.importance_pinned else ''}[/dim]"
    )
    return 0 if record.state == ServiceState.OPERATIONAL else 2


def _record_table(record: HealthCheckRecord) -> Table:
    table = Table(show_header=False)
    table.add_column("field", style="bold")
    table.add_column("value")
    style = STATE_STYLES.get(record.state, "white")
    table.add_row("State", f"[{style}]{record.state.value}[/{style}]")
    table.add_row("Response code", str(record.response_code))
    table.add_row("Response time", f"{record.response_time_ms:.1f} ms")
    table.add_row("Message", record.message)
    table.add_row("Timestamp", record.timestamp)
    return table


def main() -> None:
    parser = argparse.ArgumentParser(description="Healthwatch service monitor")
    sub = parser.add_subparsers(dest="command")

    # Server mode
    sub.add_parser("serve", help="Start the API server and the scheduler")

    # One-off probe
    check_parser = sub.add_parser("check", help="Probe a single service now")
    check_parser.add_argument("service_id", help="The service to probe")
    check_parser.add_argument("--skip-escalation", action="store_true", help="Do not raise importance")

    args = parser.parse_args()

    if args.command == "serve":
        run_server()
    elif args.command == "check":
        sys.exit(run_check(args.service_id, args.skip_escalation))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
