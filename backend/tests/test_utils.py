from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

from worktimer import utils
from worktimer.utils import (
    UTC,
    SystemClock,
    day_bounds,
    elapsed,
    ensure_utc,
    from_db_datetime,
    local_wall_clock,
    resolve_timezone,
    to_local,
)

BERLIN = ZoneInfo("Europe/Berlin")


def test_resolve_timezone_uses_configured_name():
    assert resolve_timezone("Europe/Berlin") == BERLIN


def test_host_zone_keeps_daylight_saving_rules(monkeypatch):
    monkeypatch.setenv("TZ", "Europe/Berlin")
    zone = resolve_timezone(None)

    assert isinstance(zone, ZoneInfo)
    assert ensure_utc(dt.datetime(2026, 1, 15, 12, 0), zone) == dt.datetime(2026, 1, 15, 11, 0, tzinfo=UTC)
    assert ensure_utc(dt.datetime(2026, 7, 15, 12, 0), zone) == dt.datetime(2026, 7, 15, 10, 0, tzinfo=UTC)
    assert to_local(dt.datetime(2026, 1, 15, 11, 0, tzinfo=UTC), zone).hour == 12
    assert to_local(dt.datetime(2026, 7, 15, 10, 0, tzinfo=UTC), zone).hour == 12


def test_host_zone_accepts_posix_colon_prefix(monkeypatch):
    monkeypatch.setenv("TZ", ":America/New_York")
    zone = resolve_timezone(None)

    assert zone == ZoneInfo("America/New_York")
    assert ensure_utc(dt.datetime(2026, 1, 15, 12, 0), zone).hour == 17
    assert ensure_utc(dt.datetime(2026, 7, 15, 12, 0), zone).hour == 16


def test_host_zone_read_from_localtime_link(monkeypatch, tmp_path):
    target = tmp_path / "zoneinfo" / "Europe" / "Berlin"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"")
    link = tmp_path / "localtime"
    link.symlink_to(target)
    monkeypatch.delenv("TZ", raising=False)
    monkeypatch.setattr(utils, "LOCALTIME_PATH", link)

    zone = resolve_timezone(None)

    assert zone == BERLIN
    assert ensure_utc(dt.datetime(2026, 7, 15, 12, 0), zone) == dt.datetime(2026, 7, 15, 10, 0, tzinfo=UTC)


def test_ensure_utc_reads_naive_values_in_zone():
    naive = dt.datetime(2024, 7, 1, 10, 0)
    assert ensure_utc(naive, BERLIN) == dt.datetime(2024, 7, 1, 8, 0, tzinfo=UTC)

    already = dt.datetime(2024, 7, 1, 8, 0, tzinfo=UTC)
    assert ensure_utc(already, BERLIN) is already


def test_to_local_converts_aware_and_tags_naive():
    aware = dt.datetime(2024, 1, 15, 12, 0, tzinfo=UTC)
    local = to_local(aware, BERLIN)
    assert local.hour == 13
    assert local.utcoffset() == dt.timedelta(hours=1)

    naive = dt.datetime(2024, 1, 15, 12, 0)
    assert to_local(naive, BERLIN).hour == 12
    assert local_wall_clock(aware, BERLIN) == dt.datetime(2024, 1, 15, 13, 0)


def test_from_db_datetime_attaches_utc():
    assert from_db_datetime(None) is None
    value = from_db_datetime(dt.datetime(2024, 1, 1, 9, 30))
    assert value.tzinfo is UTC


def test_elapsed_clamps_negative_spans():
    start = dt.datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
    assert elapsed(start, start + dt.timedelta(minutes=5)) == dt.timedelta(minutes=5)
    assert elapsed(start, start - dt.timedelta(minutes=5)) == dt.timedelta(0)


def test_elapsed_across_zones_measures_absolute_time():
    start = dt.datetime(2024, 1, 1, 10, 0, tzinfo=BERLIN)
    stop = dt.datetime(2024, 1, 1, 9, 30, tzinfo=UTC)
    assert elapsed(start, stop) == dt.timedelta(minutes=30)


def test_day_bounds_cover_one_local_day():
    start, end = day_bounds(dt.date(2024, 2, 29))
    assert start == dt.datetime(2024, 2, 29, 0, 0)
    assert end == dt.datetime(2024, 3, 1, 0, 0)


def test_system_clock_is_aware_utc():
    assert SystemClock().now().tzinfo is UTC
