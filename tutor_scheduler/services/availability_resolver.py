"""Combine the availability policy with the calendar's busy intervals.

``resolve_open_ranges`` is pure: same snapshot, exceptions and busy intervals
in, same ranges out. ``AvailabilityResolver`` does the I/O around it.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, time

from fastapi.concurrency import run_in_threadpool

from tutor_scheduler.core import config
from tutor_scheduler.core.clock import iterate_days, local_datetime, start_of_day
from tutor_scheduler.core.errors import BusyIntervalSourceUnavailable, InvalidRequestError
from tutor_scheduler.core.intervals import TimeRange, overlaps, subtract_all, union
from tutor_scheduler.models.scheduling import BusyInterval, DateException, PolicySnapshot
from tutor_scheduler.services.google_calendar import BusyIntervalSource
from tutor_scheduler.services.policy_store import PolicyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedDay:
    date: date
    # Ranges allowed by the template and exceptions; slots are aligned to these.
    policy_ranges: list[TimeRange]
    # policy_ranges minus busy time.
    open_ranges: list[TimeRange]


@dataclass(frozen=True)
class Resolution:
    range_start: date
    range_end: date
    policy_version: str
    days: list[ResolvedDay]

    def open_ranges_for(self, day: date) -> list[TimeRange]:
        for resolved_day in self.days:
            if resolved_day.date == day:
                return resolved_day.open_ranges
        return []


def exception_sort_key(exception: DateException) -> tuple:
    # Full-day exclusions first, then partial windows by start and end time.
    return (
        not exception.is_full_day,
        exception.start_time or time.min,
        exception.end_time or time.min,
        exception.id or 0,
    )


def policy_ranges_for_day(
    day: date,
    snapshot: PolicySnapshot,
    exceptions: list[DateException],
) -> list[TimeRange]:
    template = snapshot.template_for(day)
    if template is None or not template.enabled:
        return []

    open_ranges = [TimeRange(local_datetime(day, template.start_time), local_datetime(day, template.end_time))]

    for exception in sorted((item for item in exceptions if item.date == day), key=exception_sort_key):
        if exception.is_full_day:
            return []
        cut = TimeRange(local_datetime(day, exception.start_time), local_datetime(day, exception.end_time))
        open_ranges = subtract_all(open_ranges, [cut])

    return open_ranges


def resolve_open_ranges(
    range_start: date,
    range_end: date,
    snapshot: PolicySnapshot,
    exceptions: list[DateException],
    busy_intervals: list[BusyInterval],
) -> list[ResolvedDay]:
    """Resolve every date in ``[range_start, range_end)``, closed dates included."""
    merged_busy = union(busy_intervals)
    resolved: list[ResolvedDay] = []

    for day in iterate_days(range_start, range_end):
        policy_ranges = policy_ranges_for_day(day, snapshot, exceptions)
        relevant_busy = [
            busy for busy in merged_busy
            if any(overlaps(busy, policy_range) for policy_range in policy_ranges)
        ]
        resolved.append(
            ResolvedDay(
                date=day,
                policy_ranges=policy_ranges,
                open_ranges=subtract_all(policy_ranges, relevant_busy),
            )
        )

    return resolved


def validate_range(range_start: date, range_end: date, max_days: int | None = None) -> None:
    max_days = config.MAX_RANGE_DAYS if max_days is None else max_days
    if range_end <= range_start:
        raise InvalidRequestError('end must be after start.', field='end')
    if (range_end - range_start).days > max_days:
        raise InvalidRequestError(f'Date range cannot exceed {max_days} days.', field='end')


class AvailabilityResolver:
    def __init__(
        self,
        policy_store: PolicyStore,
        busy_source: BusyIntervalSource,
        calendar_id: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.policy_store = policy_store
        self.busy_source = busy_source
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self.timeout_seconds = config.BUSY_SOURCE_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    async def fetch_busy_intervals(self, window: TimeRange) -> list[BusyInterval]:
        try:
            return await asyncio.wait_for(
                self.busy_source.get_busy_intervals(self.calendar_id, window.start, window.end),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning('Busy-interval query timed out after %.1fs.', self.timeout_seconds)
            raise BusyIntervalSourceUnavailable('Calendar query timed out.') from exc

    async def resolve(self, range_start: date, range_end: date) -> Resolution:
        validate_range(range_start, range_end)

        snapshot = await run_in_threadpool(self.policy_store.get_weekly_template)
        exceptions = await run_in_threadpool(self.policy_store.get_exceptions, range_start, range_end)
        window = TimeRange(start_of_day(range_start), start_of_day(range_end))
        busy_intervals = await self.fetch_busy_intervals(window)

        days = resolve_open_ranges(range_start, range_end, snapshot, exceptions, busy_intervals)
        logger.info(
            'Resolved %s..%s with policy %s: %d busy intervals, %d open days.',
            range_start,
            range_end,
            snapshot.version,
            len(busy_intervals),
            sum(1 for day in days if day.open_ranges),
        )
        return Resolution(
            range_start=range_start,
            range_end=range_end,
            policy_version=snapshot.version,
            days=days,
        )
