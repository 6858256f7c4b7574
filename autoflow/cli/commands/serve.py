"""autoflow serve — Start the API server."""

import typer
from rich.console import Console

console = Console()


def serve(
    host: str = typer.Option(None, help="Host to bind to (default: AUTOFLOW_HOST)"),
    port: int = typer.Option(None, help="Port to listen on (default: AUTOFLOW_PORT)"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Start the autoflow API server."""
    import uvicorn
    from autoflow.config import AutoflowConfig

    cfg = AutoflowConfig()
    host = host or cfg.host
    port = port or cfg.port
    console.print(f"[green]Starting autoflow API on {host}:{port}[/green]")
    uvicorn.run(
        "autoflow.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=cfg.log_level.lower(),
    )
