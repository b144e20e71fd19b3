"""Quarter-hour rounding for billing."""

from __future__ import annotations

import datetime as dt

QUARTER_HOUR = dt.timedelta(minutes=15)
_ZERO = dt.timedelta(0)


def round_quarter_hour(duration: dt.timedelta, allow_zero: bool = True) -> dt.timedelta:
    """Round ``duration`` to the nearest 15 minutes.

    Midpoints round away from zero, so 7:30 becomes 15 minutes and 7:29
    becomes zero. When ``allow_zero`` is false the result is never below
    one quarter hour; non-positive durations map to zero or to exactly one
    quarter hour depending on the flag.
    """
    if duration <= _ZERO:
        return _ZERO if allow_zero else QUARTER_HOUR

    # Integer microseconds keep the midpoint exact.
    quarter_us = QUARTER_HOUR // dt.timedelta(microseconds=1)
    duration_us = duration // dt.timedelta(microseconds=1)
    quarters, remainder = divmod(duration_us, quarter_us)
    if remainder * 2 >= quarter_us:
        quarters += 1

    rounded = QUARTER_HOUR * quarters
    if rounded == _ZERO and not allow_zero:
        return QUARTER_HOUR
    return rounded
