"""autoflow poll — Resume due deferred tasks."""

import asyncio
import logging

import typer
from rich.console import Console

console = Console()


def poll_tasks(
    once: bool = typer.Option(False, "--once", help="Run a single poll and exit"),
):
    """Run the deferred-task poller until interrupted, or once with --once.

    Example:
        autoflow poll --once
    """
    from autoflow.config import AutoflowConfig
    from autoflow.triggers.poller import run

    cfg = AutoflowConfig()
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if not once:
        console.print(f"[green]Polling every {cfg.poll_interval_seconds}s — Ctrl+C to stop[/green]")
        asyncio.run(run())
        return

    report = asyncio.run(run(once=True))
    console.print(
        f"[bold]processed[/bold] {report.processed}  "
        f"[bold]failed[/bold] {report.failed}  "
        f"[bold]skipped[/bold] {report.skipped}"
    )
    for task_id, message in report.errors.items():
        console.print(f"  [red]✗[/red] [dim]{task_id}[/dim] {message}")
    if report.failed:
        raise typer.Exit(1)
