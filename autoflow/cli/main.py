"""autoflow CLI — Typer application."""

import typer
from rich.console import Console

from autoflow.version import __version__

app = typer.Typer(
    name="autoflow",
    help="autoflow — messaging-CRM automation engine.",
    no_args_is_help=True,
    invoke_without_command=True,
)
console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-v", is_eager=True, help="Show version"),
):
    """autoflow CLI."""
    if version:
        console.print(f"autoflow v{__version__}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


from autoflow.cli.commands import fire, poll, serve, validate  # noqa: E402

app.command(name="validate", help="Check an exported automation JSON file")(validate.validate_file)
app.command(name="poll", help="Resume due deferred tasks")(poll.poll_tasks)
app.command(name="fire", help="Dispatch a trigger event for one contact")(fire.fire_trigger)
app.command(name="serve", help="Start the API server")(serve.serve)


if __name__ == "__main__":
    app()
