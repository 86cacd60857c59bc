# tracker/utils/time_of_day.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterator

def at_wall_clock(day: date, t: time) -> datetime:
    """Combine a calendar day with a wall-clock time (seconds dropped)."""
    return datetime(day.year, day.month, day.day, t.hour, t.minute)

def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)

def iter_days(start: date, end: date) -> Iterator[date]:
    """Every calendar day in [start, end]; nothing when start > end."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
