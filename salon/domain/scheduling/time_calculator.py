"""Time arithmetic shared by availability, capacity and lifecycle checks.

All intervals are half-open: [start, end).
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable

from ...shared.validators import parse_hhmm


def slot_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=duration_minutes)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """True when [a_start, a_end) and [b_start, b_end) share any instant"""
    return a_start < b_end and a_end > b_start


def contains(window_start: datetime, window_end: datetime, start: datetime, end: datetime) -> bool:
    return window_start <= start and end <= window_end


def max_simultaneous(intervals: Iterable[tuple[datetime, datetime]]) -> int:
    """
    Peak number of intervals active at the same instant.

    Sweeps start (+1) and end (-1) events in time order. At equal times
    ends are processed first so back-to-back intervals do not stack.
    """
    events = []
    for start, end in intervals:
        events.append((start, 1))
        events.append((end, -1))
    events.sort(key=lambda e: (e[0], e[1]))

    current = 0
    peak = 0
    for _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak


def weekday_index(day: date) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday"""
    return (day.weekday() + 1) % 7


def at(day: date, hhmm: str) -> datetime:
    """Combine a date with an HH:MM wall-clock time"""
    return datetime.combine(day, parse_hhmm(hhmm))


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def minutes_late(scheduled: datetime, actual: datetime) -> int:
    """Whole minutes elapsed after the scheduled start, never negative"""
    delta = (actual - scheduled).total_seconds()
    if delta <= 0:
        return 0
    return int(delta // 60)
