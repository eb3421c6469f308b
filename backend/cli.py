"""
WebSocket Bridge CLI.

Command-line interface for trying connections through the registry.
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).parent))

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="ws-bridge",
    help="WebSocket Bridge CLI",
    add_completion=False,
)
console = Console()


# =============================================================================
# Connection Commands
# =============================================================================

@app.command()
def connect(
    url: str = typer.Argument(..., help="WebSocket URL"),
    message: list[str] = typer.Option([], "--message", "-m", help="Text frame to send (repeatable)"),
    duration: float = typer.Option(5.0, help="Seconds to keep listening"),
):
    """Open a connection, send messages and print received events."""
    from shared.config.logging import setup_logging
    from ws_bridge import ClosedEvent, ConnectionRegistry, DataEvent

    setup_logging()

    async def _connect() -> dict:
        closed = asyncio.Event()

        async def deliver(handle, event):
            if isinstance(event, DataEvent):
                payload = event.payload
                if isinstance(payload, bytes):
                    payload = f"<{len(payload)} bytes>"
                console.print(f"[green]← {payload}[/green]")
            elif isinstance(event, ClosedEvent):
                console.print(f"[yellow]✗ Closed: code={event.code} reason={event.reason!r}[/yellow]")
                closed.set()

        async with ConnectionRegistry(deliver) as registry:
            handle = await registry.create_handle(url)
            console.print(f"[blue]Handle {handle.connection_id} → {url}[/blue]")

            await registry.listen(handle)
            for text in message:
                await registry.send(handle, text)
                console.print(f"[cyan]→ {text}[/cyan]")

            try:
                await asyncio.wait_for(closed.wait(), timeout=duration)
            except asyncio.TimeoutError:
                # Leaving the block waits for the close to be delivered
                await registry.close(handle)

            stats = registry.get_stats()
        return stats

    stats = asyncio.run(_connect())
    _print_stats(stats)


def _print_stats(stats: dict) -> None:
    table = Table(title="Registry Stats")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Records", str(stats["records_total"]))
    for state, count in stats["records_by_state"].items():
        table.add_row(f"  {state}", str(count))
    for name, value in stats["metrics"].items():
        table.add_row(name, str(value))

    console.print(table)


# =============================================================================
# Config Commands
# =============================================================================

@app.command()
def config():
    """Show effective settings."""
    from shared.config.settings import settings

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for name, value in settings.model_dump().items():
        table.add_row(name, str(value))

    console.print(table)

    errors = settings.validate_production()
    for error in errors:
        console.print(f"[red]✗ {error}[/red]")
    if errors:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
