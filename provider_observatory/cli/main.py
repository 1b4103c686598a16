"""
CLI interface for Provider Observatory.

Provides command-line access to the usage ledger, the acquisition
pipeline and artifact verification.
"""

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from provider_observatory.config.loader import ObservatoryConfig, load_config
from provider_observatory.core.health import HealthStatus, perform_health_check
from provider_observatory.core.integrity import verify_directory
from provider_observatory.core.usage_stats import summarize_usage
from provider_observatory.pipeline.runner import handle_scheduled_invocation
from provider_observatory.storage.db import SqliteKeyValueStore
from provider_observatory.storage.repository import UsageLedger

app = typer.Typer()
usage_app = typer.Typer(help="Inspect and manage the usage ledger.")
pipeline_app = typer.Typer(help="Run the acquisition pipeline.")
app.add_typer(usage_app, name="usage")
app.add_typer(pipeline_app, name="pipeline")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_STATUS_STYLES = {
    HealthStatus.OPERATIONAL: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNREACHABLE: "red",
}


def _config(ctx: typer.Context) -> ObservatoryConfig:
    return ctx.obj["config"]


def _ledger(ctx: typer.Context) -> UsageLedger:
    store = SqliteKeyValueStore(_config(ctx).ledger.db_path)
    store.initialize()
    return UsageLedger(store)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    ),
):
    """Provider Observatory CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    try:
        ctx.obj = {"config": load_config(config_path)}
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("Provider Observatory - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the usage ledger database."""
    db_path = _config(ctx).ledger.db_path
    try:
        SqliteKeyValueStore(db_path).initialize()
        console.print(f"[green]✓[/] Ledger initialized at {db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing ledger:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _format_timestamp(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


@usage_app.command("list")
def list_usage(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum records to show"),
):
    """List recorded provider calls, newest first."""
    records = _ledger(ctx).list_all()
    if not records:
        console.print("\n[bold yellow]No usage recorded yet[/]")
        console.print("Route provider calls through an instrumented client to start recording.\n")
        return

    table = Table(title=f"Usage records ({len(records)} total)")
    table.add_column("Time")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("Request", justify="right")
    table.add_column("Response", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Latency", justify="right")
    for record in records[:limit]:
        table.add_row(
            _format_timestamp(record.timestamp),
            record.provider,
            record.model,
            f"{record.request_tokens:,}",
            f"{record.response_tokens:,}",
            f"{record.total_tokens:,}",
            f"{record.response_time} ms",
        )
    console.print(table)


@usage_app.command("summary")
def usage_summary(
    ctx: typer.Context,
    cost_per_mtok: Optional[float] = typer.Option(
        None,
        "--cost-per-mtok",
        help="Price per million tokens used for the cost estimate"
    ),
):
    """Summarize recorded usage."""
    try:
        summary = summarize_usage(_ledger(ctx).list_all(), cost_per_mtok)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if summary.total_requests == 0:
        console.print("\n[bold yellow]No usage recorded yet[/]")
        console.print("Averages are unavailable until provider calls are recorded.\n")
        return

    console.print("\n[bold]Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {summary.total_requests:,}")
    console.print(f"Total tokens: {summary.total_tokens:,}")
    console.print(f"Avg tokens/request: {summary.avg_tokens_per_request:,.1f}")
    console.print(f"Avg response time: {summary.avg_response_time:,.0f} ms")
    if summary.estimated_cost is None:
        console.print("Estimated cost: [dim]unavailable (pass --cost-per-mtok)[/]")
    else:
        console.print(f"Estimated cost: ${summary.estimated_cost:,.4f}")
        console.print(f"Avg cost/request: ${summary.avg_cost_per_request:,.4f}")

    table = Table(title="Requests by provider")
    table.add_column("Provider")
    table.add_column("Requests", justify="right")
    for provider, count in sorted(summary.requests_by_provider.items()):
        table.add_row(provider, str(count))
    console.print(table)


@usage_app.command("clear")
def clear_usage(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete every usage record. Other stored settings are kept."""
    if not yes and not typer.confirm("Delete all usage records?"):
        console.print("Aborted")
        return
    deleted = _ledger(ctx).clear_all()
    console.print(f"[green]✓[/] Deleted {deleted} usage records")


@pipeline_app.command("run")
def run_pipeline(ctx: typer.Context):
    """Run one acquisition and publish artifacts with a hash manifest."""
    pipeline_config = _config(ctx).pipeline
    response = asyncio.run(handle_scheduled_invocation(pipeline_config))
    body = json.loads(response["body"])

    if response["statusCode"] != 200:
        console.print(f"[red]{body['message']}:[/] {body.get('error', '')}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] {body['message']}: {body['filesGenerated']} files "
        f"in {pipeline_config.output_dir}"
    )


async def _run_health_checks(config: ObservatoryConfig):
    pipeline_config = config.pipeline
    async with httpx.AsyncClient() as client:
        return await asyncio.gather(*(
            perform_health_check(client, target.provider, target.endpoint, pipeline_config.health_timeout)
            for target in pipeline_config.health_checks
        ))


@app.command()
def health(ctx: typer.Context):
    """Probe the configured provider endpoints."""
    results = asyncio.run(_run_health_checks(_config(ctx)))

    table = Table(title="Provider health")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    table.add_column("Detail")
    for result in results:
        style = _STATUS_STYLES[result.status]
        table.add_row(
            result.provider,
            f"[{style}]{result.status.value}[/]",
            f"{result.response_time} ms",
            result.error or "",
        )
    console.print(table)


@app.command()
def verify(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Argument(
        None,
        help="Directory holding the artifacts and hash-manifest.json"
    ),
):
    """Verify published artifacts against their hash manifest."""
    directory = directory or Path(_config(ctx).pipeline.output_dir)
    try:
        results = verify_directory(directory)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Cannot verify {directory}:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not results:
        console.print("[yellow]Manifest lists no artifacts[/]")
        sys.exit(EXIT_CODE_FAIL)

    for result in results:
        if result.verified:
            console.print(f"[green]✓[/] {result.name} {result.actual}")
        else:
            console.print(f"[red]✗[/] {result.name}: {result.reason}")

    if not all(result.verified for result in results):
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"\n[green]All {len(results)} artifacts verified[/]")


if __name__ == "__main__":
    app()
