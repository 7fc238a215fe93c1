"""Timezone clock — "now" in any IANA zone and wall-clock to UTC conversion."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from framecast.core.errors import ConfigurationError


def get_zone(timezone: str) -> ZoneInfo:
    """Resolve an IANA timezone name. Raises ConfigurationError, never falls back to UTC."""
    if not isinstance(timezone, str) or not timezone.strip():
        raise ConfigurationError(f"Invalid timezone: {timezone!r}")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise ConfigurationError(f"Unknown timezone: {timezone!r}") from exc


def _gap_end(local: datetime, zone: ZoneInfo) -> datetime:
    """Return the first valid UTC instant at or after a wall time skipped by a DST gap.

    ``fold=1`` interprets the wall time with the post-transition offset and
    lands before the transition; ``fold=0`` uses the pre-transition offset and
    lands after it. The transition instant lies between the two.
    """
    lo = int(local.replace(tzinfo=zone, fold=1).timestamp())
    hi = int(local.replace(tzinfo=zone, fold=0).timestamp())
    after = datetime.fromtimestamp(hi, UTC).astimezone(zone).utcoffset()
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if datetime.fromtimestamp(mid, UTC).astimezone(zone).utcoffset() == after:
            hi = mid
        else:
            lo = mid
    return datetime.fromtimestamp(hi, UTC)


class TimeZoneClock:
    """Resolves "now" and converts local wall-clock times to UTC instants.

    ``now`` must return an aware UTC datetime; tests inject a fixed one.
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or (lambda: datetime.now(UTC))

    def utcnow(self) -> datetime:
        return self._now().astimezone(UTC)

    def now_in(self, timezone: str) -> datetime:
        """Naive wall-clock fields for the current instant in ``timezone``."""
        zone = get_zone(timezone)
        return self.utcnow().astimezone(zone).replace(tzinfo=None)

    def to_utc(self, local: datetime, timezone: str) -> datetime:
        """Interpret naive wall-clock fields in ``timezone`` and return the UTC instant.

        Ambiguous times (DST fall-back) resolve to their first occurrence. Times
        skipped by a spring-forward gap resolve to the end of the gap.
        """
        zone = get_zone(timezone)
        if local.tzinfo is not None:
            return local.astimezone(UTC)
        local = local.replace(microsecond=0)
        instant = local.replace(tzinfo=zone, fold=0).astimezone(UTC)
        if instant.astimezone(zone).replace(tzinfo=None) == local:
            return instant
        return _gap_end(local, zone)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from MySQL DATETIME columns."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)
