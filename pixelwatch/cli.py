"""CLI entry point for the visual monitor."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from pixelwatch.errors import MonitorError
from pixelwatch.events import EngineError, VisualRegressionDetected
from pixelwatch.models.config import MonitorConfig
from pixelwatch.models.snapshot import CheckResult, CheckStatus
from pixelwatch.monitor.engine import VisualMonitor

console = Console()

STATUS_STYLES = {
    CheckStatus.OK: "green",
    CheckStatus.ALERT: "red",
    CheckStatus.NEW_BASELINE: "blue",
    CheckStatus.FAILED: "yellow",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str) -> MonitorConfig:
    try:
        return MonitorConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'pixelwatch init' to create a default config.")
        sys.exit(1)


def print_results(results: list[CheckResult]) -> None:
    table = Table(title="Check Results")
    table.add_column("URL", style="bold")
    table.add_column("Viewport")
    table.add_column("Selector")
    table.add_column("Status")
    table.add_column("Difference", justify="right")
    table.add_column("Details")
    for r in results:
        style = STATUS_STYLES[r.status]
        diff = f"{r.diff_ratio:.2%}" if r.diff_ratio is not None else "-"
        table.add_row(
            r.target.url, r.target.viewport.name, r.target.selector,
            f"[{style}]{r.status.value}[/{style}]", diff,
            r.error or r.diff_image_ref or "",
        )
    console.print(table)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Continuous visual regression monitor"""
    setup_logging(verbose)


@cli.command()
@click.option("--url", "-u", "urls", multiple=True, required=True, help="URL to monitor (repeatable)")
@click.option("--output", "-o", default="pixelwatch.json", help="Config file path")
def init(urls: tuple[str, ...], output: str) -> None:
    """Create a default configuration file."""
    config_path = Path(output)
    if config_path.exists():
        if not click.confirm(f"{output} already exists. Overwrite?"):
            return
    cfg = MonitorConfig(urls=list(urls))
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd notification channels under 'channels', then run:")
    console.print("  [blue]pixelwatch start[/blue]")


@cli.command()
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def start(config: str) -> None:
    """Run the monitor on its schedule until interrupted."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)
    monitor.events.subscribe(VisualRegressionDetected, lambda e: console.print(
        f"[red]Regression:[/red] {e.target.label()} ({e.diff_ratio:.2%})"
    ))
    monitor.events.subscribe(EngineError, lambda e: console.print(f"[red]Error:[/red] {e.cause}"))

    async def _serve() -> None:
        await monitor.start()
        console.print(
            f"[green]Monitoring {len(monitor.targets)} target(s)[/green] "
            f"on schedule [bold]{cfg.schedule}[/bold]. Press Ctrl+C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            monitor.stop()
            if monitor.ticker is not None:
                await monitor.ticker.wait_idle()

    try:
        asyncio.run(_serve())
    except MonitorError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Monitor stopped[/yellow]")


@cli.command()
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def check(config: str) -> None:
    """Run a single check of every target now."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)

    async def _check() -> list[CheckResult]:
        await asyncio.to_thread(monitor.registry.load_all)
        return await monitor.run_check()

    try:
        results = asyncio.run(_check())
    except MonitorError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    print_results(results)
    if any(r.status == CheckStatus.ALERT for r in results):
        sys.exit(2)


@cli.group()
def baseline() -> None:
    """Manage baseline snapshots."""
    pass


@baseline.command("create")
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def baseline_create(config: str) -> None:
    """Capture every target and store the captures as baselines."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)
    try:
        result = asyncio.run(monitor.create_baselines())
    except MonitorError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Created {result['count']} baseline(s)[/green]")
    if result["failed"]:
        console.print(f"[yellow]{result['failed']} capture(s) failed[/yellow]")


@baseline.command("accept")
@click.option("--url", "-u", default=None, help="Only this URL")
@click.option("--viewport", "-w", default=None, help="Only this viewport name")
@click.option("--selector", "-s", default=None, help="Only this selector")
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def baseline_accept(url: str | None, viewport: str | None, selector: str | None, config: str) -> None:
    """Accept the current rendering as the new baseline."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)
    try:
        result = asyncio.run(monitor.accept_as_baseline(url, viewport, selector))
    except (MonitorError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]Updated {result['count']} baseline(s)[/green]")


@baseline.command("list")
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def baseline_list(config: str) -> None:
    """List stored baselines."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)
    monitor.registry.load_all()
    if len(monitor.registry) == 0:
        console.print("[yellow]No baselines stored[/yellow]")
        return
    table = Table(title="Baselines")
    table.add_column("Key", style="bold")
    table.add_column("URL")
    table.add_column("Viewport")
    table.add_column("Selector")
    table.add_column("Captured")
    for key, snap in monitor.registry.items():
        table.add_row(key, snap.url, snap.viewport.name, snap.selector, snap.captured_at)
    console.print(table)


@cli.command()
@click.argument("key")
@click.option("--config", "-c", default="pixelwatch.json", help="Config file path")
def history(key: str, config: str) -> None:
    """Show retained history for a snapshot key."""
    cfg = load_config(config)
    monitor = VisualMonitor(cfg)
    entries = monitor.store.history(key)
    if not entries:
        console.print(f"[yellow]No history for {key}[/yellow]")
        return
    table = Table(title=f"History: {key}")
    table.add_column("#", justify="right")
    table.add_column("Captured")
    table.add_column("Difference", justify="right")
    table.add_column("Alert")
    for entry in entries:
        table.add_row(
            str(entry.sequence), entry.record.captured_at,
            f"{entry.comparison.diff_ratio:.2%}",
            "[red]yes[/red]" if entry.comparison.exceeds_threshold else "no",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
