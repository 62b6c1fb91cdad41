"""
Stateless interval helpers.
"""

from collections.abc import Iterable
from dataclasses import replace
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta

from calendar_busy_sync.models import BusyInterval

# Inclusive end of a local calendar day: 23:59:59.999
_END_OF_DAY = time(23, 59, 59, 999000)
# Added to the inclusive window end this gives the next local midnight.
_END_OF_DAY_TAIL = timedelta(milliseconds=1)


def overlaps(a: BusyInterval, b: BusyInterval) -> bool:
    """Half-open overlap test; touching endpoints do not overlap."""
    return a.start < b.end and b.start < a.end


def overlaps_any(interval: BusyInterval, others: Iterable[BusyInterval]) -> bool:
    return any(overlaps(interval, other) for other in others)


def intersection(a: BusyInterval, b: BusyInterval) -> tuple[datetime, datetime] | None:
    """Return the overlapping (start, end) of two intervals, or None."""
    if not overlaps(a, b):
        return None
    return (max(a.start, b.start), min(a.end, b.end))


def day_window(target: date) -> tuple[datetime, datetime]:
    """Return the local-time window [00:00:00.000, 23:59:59.999] for a day.

    Both bounds are timezone-aware in the local zone of the running process.
    """
    start = datetime.combine(target, time.min).astimezone()
    end = datetime.combine(target, _END_OF_DAY).astimezone()
    return start, end


def intersects_window(interval: BusyInterval, window_start: datetime, window_end: datetime) -> bool:
    """True when the interval shares at least one instant with the inclusive window."""
    return interval.start <= window_end and interval.end > window_start


def clip_to_window(
    interval: BusyInterval, window_start: datetime, window_end: datetime
) -> BusyInterval:
    """Trim an interval that intersects the window to [window_start, next midnight)."""
    start = max(interval.start, window_start)
    end = min(interval.end, window_end + _END_OF_DAY_TAIL)
    if (start, end) == interval.bounds:
        return interval
    return replace(interval, start=start, end=end)


def sync_dates(target: date, look_behind_days: int = 0, look_ahead_days: int = 0) -> list[date]:
    """Expand a target day into the list of days a sync invocation covers."""
    first = target - timedelta(days=max(look_behind_days, 0))
    last = target + timedelta(days=max(look_ahead_days, 0))
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def busy_block_subject(source: BusyInterval, label: str, mirror_subjects: bool = False) -> str:
    """Subject for a block mirroring ``source`` on another calendar.

    Private sources always get the generic label.
    """
    if mirror_subjects and not source.is_private and source.subject.strip():
        return source.subject
    return label
