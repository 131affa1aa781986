"""Interval algebra over timezone-aware datetimes.

Every range is half-open, ``[start, end)``. Two ranges that only touch at an
endpoint do not overlap, so back-to-back appointments are allowed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable


@dataclass(frozen=True, order=True)
class TimeRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError('TimeRange requires timezone-aware datetimes.')
        if self.end < self.start:
            raise ValueError('TimeRange end must not precede its start.')

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def contains(self, other: 'TimeRange') -> bool:
        return self.start <= other.start and other.end <= self.end


def _bounds(time_range: TimeRange) -> tuple[datetime, datetime]:
    return time_range.start, time_range.end


def overlaps(first: TimeRange, second: TimeRange) -> bool:
    return first.start < second.end and first.end > second.start


def subtract(base: TimeRange, cut: TimeRange) -> list[TimeRange]:
    """Return what is left of ``base`` once ``cut`` is removed (zero, one or two pieces)."""
    if not overlaps(base, cut):
        return [] if base.is_empty else [base]

    remainder: list[TimeRange] = []
    if cut.start > base.start:
        remainder.append(TimeRange(base.start, cut.start))
    if cut.end < base.end:
        remainder.append(TimeRange(cut.end, base.end))
    return remainder


def subtract_all(ranges: Iterable[TimeRange], cuts: Iterable[TimeRange]) -> list[TimeRange]:
    remaining = [time_range for time_range in ranges if not time_range.is_empty]
    for cut in cuts:
        if cut.is_empty:
            continue
        next_remaining: list[TimeRange] = []
        for time_range in remaining:
            next_remaining.extend(subtract(time_range, cut))
        remaining = next_remaining
    return sorted(remaining, key=_bounds)


def union(ranges: Iterable[TimeRange]) -> list[TimeRange]:
    """Merge overlapping or touching ranges into a sorted, disjoint list."""
    merged: list[TimeRange] = []
    for time_range in sorted(ranges, key=_bounds):
        if time_range.is_empty:
            continue
        if merged and time_range.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeRange(last.start, max(last.end, time_range.end))
        else:
            merged.append(time_range)
    return merged
