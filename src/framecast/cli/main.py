"""Framecast CLI — main entry point."""

import click

from framecast.cli.next_run import next_run
from framecast.cli.status import status


@click.group()
@click.version_option(package_name="framecast")
def cli():
    """Framecast — scheduled and batch image generation."""


cli.add_command(next_run)
cli.add_command(status)


@cli.command()
def daemon():
    """Start the Framecast daemon (scheduler and batch processor)."""
    import asyncio

    from framecast.core.loop import run_daemon

    click.echo("Starting Framecast daemon...")
    asyncio.run(run_daemon())


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to API_HOST)")
@click.option("--port", default=None, type=int, help="Bind port (defaults to API_PORT)")
def api(host: str | None, port: int | None):
    """Serve the REST API with uvicorn."""
    import uvicorn

    from framecast.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "framecast.api.app:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
    )
