"""Half-open interval arithmetic over naive datetimes."""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator

Interval = tuple[datetime, datetime]


def as_naive(value: datetime) -> datetime:
    """Clinic times are naive local wall-clock times; aware inputs are converted."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    return start < other_end and other_start < end


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Collapse overlapping or touching intervals into their union."""
    merged: list[Interval] = []
    for start, end in sorted(intervals):
        if start >= end:
            continue
        if merged and start <= merged[-1][1]:
            previous_start, previous_end = merged[-1]
            merged[-1] = (previous_start, max(previous_end, end))
        else:
            merged.append((start, end))
    return merged


def intersect_envelopes(envelopes: list[list[Interval]]) -> list[Interval]:
    """Return the intervals covered by every envelope.

    Each envelope must already be merged and sorted.
    """
    if not envelopes:
        return []

    common = envelopes[0]
    for envelope in envelopes[1:]:
        result: list[Interval] = []
        i = j = 0
        while i < len(common) and j < len(envelope):
            start = max(common[i][0], envelope[j][0])
            end = min(common[i][1], envelope[j][1])
            if start < end:
                result.append((start, end))
            if common[i][1] < envelope[j][1]:
                i += 1
            else:
                j += 1
        common = result
        if not common:
            break

    return common


def day_envelope(day: date, windows: Iterable[tuple[time, time]]) -> list[Interval]:
    return merge_intervals(
        (datetime.combine(day, start), datetime.combine(day, end)) for start, end in windows
    )


def iterate_steps(interval: Interval, duration: timedelta) -> Iterator[Interval]:
    """Yield consecutive ``duration``-sized steps that fit inside ``interval``."""
    current, interval_end = interval
    while current + duration <= interval_end:
        yield current, current + duration
        current += duration


def collides(start: datetime, end: datetime, busy: Iterable[Interval]) -> bool:
    return any(overlaps(start, end, busy_start, busy_end) for busy_start, busy_end in busy)


def iterate_days(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)
