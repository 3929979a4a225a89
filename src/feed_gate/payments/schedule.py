"""Calendar arithmetic for the monthly settlement sweep.

A sweep fires when the last day of the month begins (00:00 local time).
Month lengths come from a fixed table in which February always has 28
days, so in leap years the sweep runs on the 28th rather than the 29th.
"""

from __future__ import annotations

from datetime import datetime, timezone

_THIRTY_ONE_DAY_MONTHS = frozenset({1, 3, 5, 7, 8, 10, 12})


def month_length(month: int) -> int:
    """Days in *month* according to the sweep table (February is always 28)."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    if month in _THIRTY_ONE_DAY_MONTHS:
        return 31
    if month == 2:
        return 28
    return 30


def month_boundary(year: int, month: int, tz=None) -> datetime:
    """The instant the last day of *month* begins, in *tz*."""
    return datetime(year, month, month_length(month), tzinfo=tz)


def next_sweep_at(now: datetime) -> datetime:
    """Return the first sweep boundary strictly after *now*.

    The boundary is computed in *now*'s timezone.  When this month's
    boundary has already been reached (the last day itself, or 29 February)
    the following month's boundary is returned.
    """
    boundary = month_boundary(now.year, now.month, now.tzinfo)
    if boundary > now:
        return boundary
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    return month_boundary(year, month, now.tzinfo)


def seconds_until(target: datetime, now: datetime) -> float:
    """Real elapsed seconds from *now* to *target*, DST transitions included."""
    if target.tzinfo is None or now.tzinfo is None:
        return (target - now).total_seconds()
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()
