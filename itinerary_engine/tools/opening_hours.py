"""Opening-hours arithmetic on a minute-of-week timeline.

Periods follow the Places convention (day 0 = Sunday). A close time that is
not after the open time wraps into the following day, a period without a
close is open until midnight, and the lone ``Sunday 00:00`` period without a
close means open around the clock. Intervals are closed-open.
"""
from __future__ import annotations

import datetime as dt
from typing import List, Optional, Tuple

from itinerary_engine.schemas import OpeningHours

DAY_MINUTES = 24 * 60
WEEK_MINUTES = 7 * DAY_MINUTES

Interval = Tuple[int, int]


def weekday_index(day: dt.date) -> int:
    """Python counts Monday as 0; Places counts Sunday as 0."""
    return (day.weekday() + 1) % 7


def open_intervals(hours: Optional[OpeningHours]) -> Optional[List[Interval]]:
    """Merged open intervals covering three consecutive weeks.

    Returns ``None`` when there is no hours data, which callers treat as
    "always open".
    """
    if hours is None or not hours.known:
        return None

    periods = hours.periods
    if len(periods) == 1 and periods[0].close is None and periods[0].open.minute_of_week == 0:
        return [(-WEEK_MINUTES, 2 * WEEK_MINUTES)]

    base: List[Interval] = []
    for period in periods:
        start = period.open.minute_of_week
        if period.close is None:
            end = period.open.day * DAY_MINUTES + DAY_MINUTES
        else:
            end = period.close.minute_of_week
            if end <= start:
                end += WEEK_MINUTES
        base.append((start, end))

    shifted = sorted(
        (start + offset, end + offset)
        for start, end in base
        for offset in (-WEEK_MINUTES, 0, WEEK_MINUTES)
    )
    merged: List[Interval] = []
    for start, end in shifted:
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def intervals_cover(intervals: Optional[List[Interval]], day: dt.date, start_minute: int, end_minute: int) -> bool:
    """Whether ``[start_minute, end_minute)`` after midnight of ``day`` is fully open."""
    if intervals is None:
        return True
    offset = weekday_index(day) * DAY_MINUTES
    lo, hi = offset + start_minute, offset + end_minute
    return any(start <= lo and hi <= end for start, end in intervals)


def covers(hours: Optional[OpeningHours], start: dt.datetime, end: dt.datetime) -> bool:
    day = start.date()
    start_minute = start.hour * 60 + start.minute
    length = int((end - start).total_seconds() // 60)
    return intervals_cover(open_intervals(hours), day, start_minute, start_minute + length)


def opening_points(intervals: Optional[List[Interval]], day: dt.date) -> List[int]:
    """Minutes after midnight of ``day`` at which a place opens."""
    if intervals is None:
        return []
    offset = weekday_index(day) * DAY_MINUTES
    return sorted(
        start - offset for start, _ in intervals if offset <= start < offset + DAY_MINUTES
    )
