from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from tutor_scheduler.core import config


@lru_cache(maxsize=None)
def business_timezone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or config.BUSINESS_TIMEZONE)


def now() -> datetime:
    return datetime.now(business_timezone())


def local_datetime(day: date, wall_clock: time) -> datetime:
    return datetime.combine(day, wall_clock, tzinfo=business_timezone())


def start_of_day(day: date) -> datetime:
    return local_datetime(day, time(0, 0))


def to_business_time(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError('Expected a timezone-aware datetime.')
    return value.astimezone(business_timezone())


def parse_rfc3339(value: str) -> datetime:
    # fromisoformat only accepts a trailing "Z" from Python 3.11 on.
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def iterate_days(range_start: date, range_end: date):
    current_day = range_start
    while current_day < range_end:
        yield current_day
        current_day += timedelta(days=1)
