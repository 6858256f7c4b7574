"""autoflow validate — Structural checks for an exported automation."""

import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def validate_file(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Automation JSON export"),
):
    """Validate an automation graph and print every violation.

    Exits 1 when the file does not parse or the graph has hard errors;
    warnings alone exit 0.

    Example:
        autoflow validate welcome.json
    """
    from autoflow.engine.validator import AutomationValidator
    from autoflow.types import Automation

    try:
        automation = Automation.model_validate(json.loads(path.read_text()))
    except (ValueError, ValidationError) as exc:
        console.print(f"[bold red]✗ {path.name} is not a valid automation[/bold red]")
        console.print(f"[dim]{exc}[/dim]")
        raise typer.Exit(1)

    violations = AutomationValidator().validate(automation)
    if not violations:
        console.print(
            f"[bold green]✓ {automation.name}[/bold green] "
            f"[dim]({len(automation.nodes)} nodes, {len(automation.edges)} edges)[/dim]"
        )
        return

    table = Table(
        box=box.ROUNDED,
        header_style="bold dim",
        title=f"[bold]{automation.name}[/bold]",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Level", width=9)
    table.add_column("Violation")

    errors = 0
    for i, violation in enumerate(violations, 1):
        if violation.startswith("WARNING"):
            level = "[yellow]warning[/yellow]"
            violation = violation.removeprefix("WARNING:").strip()
        else:
            level = "[red]error[/red]"
            errors += 1
        table.add_row(str(i), level, violation)

    console.print(table)
    if errors:
        raise typer.Exit(1)
