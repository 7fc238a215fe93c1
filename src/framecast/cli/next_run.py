"""framecast next-run — preview when a schedule would fire."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from framecast.core.clock import TimeZoneClock, get_zone
from framecast.core.errors import ConfigurationError
from framecast.core.recurrence import describe_schedule, upcoming_runs, validate_schedule

console = Console()


def _parse_days(value: str | None) -> list[int] | None:
    if not value:
        return None
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise click.BadParameter("days must be comma-separated integers 0-6") from exc


@click.command("next-run")
@click.option(
    "--type",
    "schedule_type",
    type=click.Choice(["once", "daily", "weekly"]),
    default="daily",
    show_default=True,
)
@click.option("--time", "schedule_time", default=None, help="Local time as HH:MM")
@click.option("--days", default=None, help="Weekdays for weekly schedules, Sunday=0 (e.g. 1,3,5)")
@click.option(
    "--at", "scheduled_at", default=None, help="Local datetime for once, e.g. 2026-01-18T14:36"
)
@click.option("--tz", "timezone", default="UTC", show_default=True, help="IANA timezone name")
@click.option("--count", default=5, show_default=True, type=click.IntRange(1, 50))
def next_run(
    schedule_type: str,
    schedule_time: str | None,
    days: str | None,
    scheduled_at: str | None,
    timezone: str,
    count: int,
):
    """Print the next COUNT run instants of a schedule."""
    clock = TimeZoneClock()
    now = clock.utcnow()
    schedule_days = _parse_days(days)
    try:
        validate_schedule(
            prompt="preview",
            schedule_type=schedule_type,
            schedule_time=schedule_time,
            schedule_days=schedule_days,
            scheduled_at=scheduled_at,
            timezone=timezone,
            reference_now=now,
        )
        runs = upcoming_runs(
            schedule_type, schedule_time, schedule_days, scheduled_at, timezone, now, count
        )
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc

    zone = get_zone(timezone)
    summary = describe_schedule(schedule_type, schedule_time, schedule_days, scheduled_at, timezone)
    table = Table(title=summary, show_header=True)
    table.add_column("#", justify="right")
    table.add_column("UTC")
    table.add_column(f"Local ({timezone})")
    for index, run in enumerate(runs, start=1):
        table.add_row(
            str(index),
            run.strftime("%Y-%m-%d %H:%M %Z"),
            run.astimezone(zone).strftime("%a %Y-%m-%d %H:%M %Z"),
        )

    if not runs:
        console.print("[dim]No upcoming runs[/dim]")
    else:
        console.print(table)
