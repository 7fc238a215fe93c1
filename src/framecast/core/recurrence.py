"""Recurrence calculator — next UTC run instant for once/daily/weekly schedules."""

from __future__ import annotations

import enum
import json
import re
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from framecast.core.clock import TimeZoneClock, get_zone
from framecast.core.errors import ConfigurationError

_TIME_RE = re.compile(r"(\d{2}):(\d{2})")

# Sunday=0, matching the stored schedule_days values
WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")


class ScheduleType(enum.StrEnum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


def parse_schedule_time(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` into (hour, minute)."""
    match = _TIME_RE.fullmatch(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ConfigurationError("Schedule time must be in HH:MM format")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ConfigurationError("Invalid schedule time")
    return hour, minute


def parse_scheduled_at(value: str | datetime) -> datetime:
    """Parse a local wall-clock datetime such as ``2026-01-18T14:36``."""
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value.strip())
    except (AttributeError, TypeError, ValueError) as exc:
        raise ConfigurationError("Invalid scheduled date/time format") from exc


def normalize_days(days: Iterable[int] | str | None) -> list[int]:
    """Return sorted unique weekday integers (0-6, Sunday=0)."""
    if days is None:
        return []
    if isinstance(days, str):
        try:
            days = json.loads(days)
        except ValueError as exc:
            raise ConfigurationError("Invalid schedule days") from exc
    result: set[int] = set()
    for day in days:
        if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
            raise ConfigurationError("Invalid day value. Days must be 0-6 (Sunday-Saturday)")
        result.add(day)
    return sorted(result)


def weekday_of(day: date) -> int:
    return (day.weekday() + 1) % 7


def next_run_at(
    schedule_type: str,
    schedule_time: str | None,
    schedule_days: Iterable[int] | str | None,
    scheduled_at: str | datetime | None,
    timezone: str,
    reference_now: datetime,
) -> datetime | None:
    """Compute the next UTC run instant strictly after ``reference_now``.

    Returns None when the schedule cannot fire again: a one-time instant that
    has passed, an empty weekly day set, or missing required fields. An
    occurrence equal to ``reference_now`` is never returned, so a job is not
    fired twice at the boundary instant.
    """
    try:
        kind = ScheduleType(schedule_type)
    except ValueError:
        return None

    if reference_now.tzinfo is None:
        reference_now = reference_now.replace(tzinfo=UTC)
    clock = TimeZoneClock(lambda: reference_now)
    now_utc = clock.utcnow()

    if kind is ScheduleType.ONCE:
        if not scheduled_at:
            return None
        instant = clock.to_utc(parse_scheduled_at(scheduled_at), timezone)
        return instant if instant > now_utc else None

    if not schedule_time:
        return None
    hour, minute = parse_schedule_time(schedule_time)
    today = clock.now_in(timezone).date()

    def occurrence(day: date) -> datetime:
        return clock.to_utc(datetime.combine(day, time(hour, minute)), timezone)

    if kind is ScheduleType.DAILY:
        candidate = occurrence(today)
        if candidate <= now_utc:
            candidate = occurrence(today + timedelta(days=1))
        return candidate

    days = normalize_days(schedule_days)
    if not days:
        return None
    for offset in range(7):
        day = today + timedelta(days=offset)
        if weekday_of(day) in days:
            candidate = occurrence(day)
            if candidate > now_utc:
                return candidate
    # Only today's weekday is selected and its time has passed
    until = (days[0] - weekday_of(today)) % 7 or 7
    return occurrence(today + timedelta(days=until))


def upcoming_runs(
    schedule_type: str,
    schedule_time: str | None,
    schedule_days: Iterable[int] | str | None,
    scheduled_at: str | datetime | None,
    timezone: str,
    reference_now: datetime,
    count: int = 5,
) -> list[datetime]:
    """Return up to ``count`` consecutive future run instants."""
    runs: list[datetime] = []
    cursor = reference_now
    while len(runs) < count:
        nxt = next_run_at(
            schedule_type, schedule_time, schedule_days, scheduled_at, timezone, cursor
        )
        if nxt is None:
            break
        runs.append(nxt)
        cursor = nxt
    return runs


def validate_schedule(
    *,
    prompt: str | None,
    schedule_type: str | None,
    schedule_time: str | None = None,
    schedule_days: Iterable[int] | None = None,
    scheduled_at: str | None = None,
    timezone: str = "UTC",
    reference_now: datetime | None = None,
) -> None:
    """Reject malformed schedule input. Raises ConfigurationError with a user-facing message."""
    if not prompt or not prompt.strip():
        raise ConfigurationError("Prompt is required")

    try:
        kind = ScheduleType(schedule_type)
    except ValueError as exc:
        raise ConfigurationError(
            "Invalid schedule type. Must be 'once', 'daily', or 'weekly'"
        ) from exc

    get_zone(timezone)

    if kind is ScheduleType.ONCE:
        if not scheduled_at:
            raise ConfigurationError("Scheduled date/time is required for one-time schedules")
        local = parse_scheduled_at(scheduled_at)
        clock = TimeZoneClock(lambda: reference_now) if reference_now else TimeZoneClock()
        if clock.to_utc(local, timezone) <= clock.utcnow():
            raise ConfigurationError("Scheduled time must be in the future")
        return

    if not schedule_time:
        raise ConfigurationError("Schedule time must be in HH:MM format")
    parse_schedule_time(schedule_time)

    if kind is ScheduleType.WEEKLY and not normalize_days(schedule_days):
        raise ConfigurationError("At least one day must be selected for weekly schedules")


def describe_schedule(
    schedule_type: str,
    schedule_time: str | None,
    schedule_days: Iterable[int] | str | None,
    scheduled_at: str | None,
    timezone: str,
) -> str:
    """Human-readable summary of a schedule, e.g. ``Mon, Wed, Fri at 09:00 (UTC)``."""
    zone_label = f"({timezone})"
    if schedule_type == ScheduleType.ONCE:
        if not scheduled_at:
            return "Once (unscheduled)"
        local = parse_scheduled_at(scheduled_at)
        return f"Once on {local:%Y-%m-%d} at {local:%H:%M} {zone_label}"
    if schedule_type == ScheduleType.DAILY:
        return f"Every day at {schedule_time} {zone_label}"
    if schedule_type == ScheduleType.WEEKLY:
        days = normalize_days(schedule_days)
        if days == [1, 2, 3, 4, 5]:
            label = "Weekdays"
        elif days == [0, 6]:
            label = "Weekends"
        elif len(days) == 7:
            label = "Every day"
        else:
            label = ", ".join(WEEKDAY_NAMES[d] for d in days)
        return f"{label} at {schedule_time} {zone_label}"
    return str(schedule_type)


def schedule_fields(job: Any) -> tuple[str, str | None, Any, str | None, str]:
    """Extract the recurrence spec from a ScheduledJob-like object."""
    return (
        job.schedule_type,
        job.schedule_time,
        job.schedule_days,
        job.scheduled_at,
        job.timezone,
    )
