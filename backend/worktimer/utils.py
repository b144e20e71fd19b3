from __future__ import annotations

import datetime as dt
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCALTIME_PATH = Path("/etc/localtime")
ZERO = dt.timedelta(0)


class TimeSource(Protocol):
    def now(self) -> dt.datetime:
        """Return the current absolute time as an aware UTC datetime."""


class SystemClock:
    """Time source backed by the host clock."""

    def now(self) -> dt.datetime:
        return dt.datetime.now(UTC)


def _host_zone_name() -> Optional[str]:
    name = os.getenv("TZ", "").strip().lstrip(":")
    if name and not name.startswith("/"):
        return name
    if LOCALTIME_PATH.is_symlink():
        target = str(LOCALTIME_PATH.resolve())
        if "zoneinfo/" in target:
            return target.split("zoneinfo/", 1)[1]
    return None


def resolve_timezone(name: Optional[str] = None) -> dt.tzinfo:
    """Return the configured zone, or the host's local zone when none is set.

    The host zone is always a full ``ZoneInfo`` so wall-clock conversions
    follow its daylight-saving rules rather than the offset in effect at
    startup.
    """
    if name:
        return ZoneInfo(name)

    host_name = _host_zone_name()
    if host_name:
        try:
            return ZoneInfo(host_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown host time zone, trying %s", LOCALTIME_PATH, extra={"zone": host_name})
    if LOCALTIME_PATH.exists():
        with LOCALTIME_PATH.open("rb") as handle:
            return ZoneInfo.from_file(handle, key="localtime")
    return UTC


def ensure_utc(value: dt.datetime, zone: dt.tzinfo) -> dt.datetime:
    """Absolute form of ``value``; naive values are read as wall-clock time in ``zone``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    if value.tzinfo is UTC:
        return value
    return value.astimezone(UTC)


def to_local(value: dt.datetime, zone: dt.tzinfo) -> dt.datetime:
    """Local form of ``value`` regardless of how the caller tagged it."""
    if value.tzinfo is None:
        return value.replace(tzinfo=zone)
    return value.astimezone(zone)


def from_db_datetime(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_wall_clock(value: dt.datetime, zone: dt.tzinfo) -> dt.datetime:
    """Naive wall-clock form used for the local columns."""
    return to_local(value, zone).replace(tzinfo=None)


def elapsed(start: dt.datetime, stop: dt.datetime) -> dt.timedelta:
    """Span between two instants; negative spans clamp to zero."""
    if (start.tzinfo is None) != (stop.tzinfo is None):
        start = from_db_datetime(start)
        stop = from_db_datetime(stop)
    duration = stop - start
    return duration if duration > ZERO else ZERO


def day_bounds(day: dt.date) -> Tuple[dt.datetime, dt.datetime]:
    start_local = dt.datetime.combine(day, dt.time.min)
    return start_local, start_local + dt.timedelta(days=1)
