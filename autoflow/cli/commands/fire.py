"""autoflow fire — Dispatch a trigger event from the command line."""

import asyncio
import json
import logging

import typer
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()

_OUTCOME_COLOR = {
    "completed": "green",
    "suspended": "yellow",
    "aborted": "red",
}


async def _fire(trigger: str, contact_id: int, data: dict) -> list:
    from autoflow.clients.messaging import WhatsAppClient
    from autoflow.db.database import init_db
    from autoflow.wiring import build_services

    await init_db()
    async with WhatsAppClient() as messaging:
        services = build_services(messaging)
        results = await services.matcher.dispatch(trigger, {**data, "contact_id": contact_id})
        await services.runner.drain()
    return results


def fire_trigger(
    trigger: str = typer.Argument(..., help="contact_created | tag_added | crm_stage_changed | context_message | webhook"),
    contact_id: int = typer.Option(..., "--contact-id", "-c", help="Contact the event is about"),
    data: str = typer.Option("{}", "--data", "-d", help="Event payload as a JSON object"),
):
    """Run every automation the event matches, against the configured database.

    Example:
        autoflow fire tag_added --contact-id 7 --data '{"tag_name": "vip"}'
    """
    from autoflow.config import AutoflowConfig
    from autoflow.exceptions import TriggerError
    from autoflow.types import TriggerType

    try:
        TriggerType(trigger)
    except ValueError:
        valid = ", ".join(t.value for t in TriggerType)
        console.print(f"[red]Unknown trigger {trigger!r}.[/red] Choose one of: {valid}")
        raise typer.Exit(2)
    try:
        payload = json.loads(data)
    except ValueError as exc:
        console.print(f"[red]--data is not valid JSON:[/red] {exc}")
        raise typer.Exit(2)
    if not isinstance(payload, dict):
        console.print("[red]--data must be a JSON object[/red]")
        raise typer.Exit(2)

    logging.basicConfig(level=AutoflowConfig().log_level.upper())
    try:
        results = asyncio.run(_fire(trigger, contact_id, payload))
    except TriggerError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    if not results:
        console.print("[dim]No automation matched.[/dim]")
        return

    table = Table(box=box.ROUNDED, header_style="bold dim")
    table.add_column("Automation", style="cyan")
    table.add_column("Outcome")
    table.add_column("Nodes", justify="right")
    table.add_column("Note", style="dim")
    for r in results:
        color = _OUTCOME_COLOR.get(r.outcome.value, "white")
        note = r.error or (f"deferred task {r.deferred_task_id}" if r.deferred_task_id else "")
        if r.step_limit_hit:
            note = "step limit hit"
        table.add_row(r.automation_id, f"[{color}]{r.outcome.value}[/{color}]", str(len(r.visited)), note)
    console.print(table)
