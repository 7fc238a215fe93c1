"""framecast status — show due scheduled jobs and active batches."""

from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command()
def status():
    """Show scheduled jobs that are due now and batches still in progress."""
    asyncio.run(_show_status())


async def _show_status() -> None:
    from framecast.core.clock import TimeZoneClock
    from framecast.core.store import SqlJobStore

    console.print("\n[bold magenta]Framecast Status[/bold magenta]\n")
    store = SqlJobStore()
    now = TimeZoneClock().utcnow()

    try:
        due = await store.find_due_scheduled_jobs(now)
        if not due:
            console.print("[dim]No scheduled jobs due[/dim]")
        else:
            table = Table(title="Due Scheduled Jobs", show_header=True)
            table.add_column("Job ID")
            table.add_column("Type")
            table.add_column("Next run (UTC)")
            table.add_column("Prompt")
            for job in due:
                table.add_row(
                    job.id,
                    job.schedule_type,
                    job.next_run_at.strftime("%Y-%m-%d %H:%M") if job.next_run_at else "",
                    job.prompt[:50],
                )
            console.print(table)
    except Exception as e:
        console.print(f"[yellow]Could not load scheduled jobs: {e}[/yellow]")

    try:
        batches = await store.list_active_batches()
        if not batches:
            console.print("[dim]No active batches[/dim]")
        else:
            table = Table(title="Active Batches", show_header=True)
            table.add_column("Batch ID")
            table.add_column("Status")
            table.add_column("Progress", justify="right")
            for batch in batches:
                done = batch.completed_count + batch.failed_count
                table.add_row(batch.id, str(batch.status), f"{done}/{batch.total_count}")
            console.print(table)
    except Exception as e:
        console.print(f"[yellow]Could not load batches: {e}[/yellow]")

    console.print()
