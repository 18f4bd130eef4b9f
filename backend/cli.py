"""
Convo CLI.

Command-line interface for running and poking the relay.
"""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from shared.config.settings import get_settings
from shared.infrastructure.events import (
    BrokerPool,
    ChatPublisher,
    Message,
    MessageKind,
    check_broker_health,
)

app = typer.Typer(
    name="convo",
    help="Convo chat relay CLI",
    add_completion=False,
)
console = Console()


# =============================================================================
# Server Commands
# =============================================================================

@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (default from settings)"),
    port: int = typer.Option(None, help="Port (default from settings)"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run the WebSocket gateway."""
    import uvicorn

    settings = get_settings()
    host = host or settings.ws_gateway_host
    port = port or settings.ws_gateway_port
    console.print(f"[blue]Starting gateway on {host}:{port}[/blue]")
    uvicorn.run("ws_gateway.main:app", host=host, port=port, reload=reload)


# =============================================================================
# Broker Commands
# =============================================================================

@app.command()
def publish(
    text: str = typer.Argument(..., help="Message text"),
    user: str = typer.Option("cli", "--user", "-u", help="Sender name"),
    kind: str = typer.Option(MessageKind.CHAT.value, "--kind", "-k", help="Message type"),
):
    """Publish one message to every connected client."""
    message = Message(kind=kind, text=text, user=user)

    async def _publish() -> None:
        pool = BrokerPool.from_settings(get_settings())
        try:
            await ChatPublisher(pool).publish(message)
        finally:
            await pool.close()

    try:
        asyncio.run(_publish())
    except Exception as e:
        console.print(f"[red]✗ Publish failed: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓ Published:[/green] {message.to_json()}")


@app.command()
def ping():
    """Check that Redis is reachable."""
    settings = get_settings()

    async def _ping():
        pool = BrokerPool.from_settings(settings)
        try:
            return await check_broker_health(pool)
        finally:
            await pool.close()

    result = asyncio.run(_ping())

    table = Table(title="Redis")
    table.add_column("Check", style="cyan")
    table.add_column("Value")
    table.add_row("url", settings.redis_url)
    table.add_row("status", result.status.value)
    if result.latency_ms is not None:
        table.add_row("latency_ms", f"{result.latency_ms:.2f}")
    if result.error:
        table.add_row("error", result.error)
    console.print(table)

    if not result.is_healthy:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
