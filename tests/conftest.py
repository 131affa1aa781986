import asyncio
import os
from datetime import date, datetime, time

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('BUSINESS_TIMEZONE', 'Asia/Tokyo')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')
os.environ.setdefault('ADMIN_EMAILS', 'admin@example.com')
os.environ.setdefault('RESEND_API_KEY', '')

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tutor_scheduler.core.clock import local_datetime  # noqa: E402
from tutor_scheduler.core.errors import BusyIntervalSourceUnavailable, CalendarServiceError  # noqa: E402
from tutor_scheduler.database import Base  # noqa: E402
from tutor_scheduler.models.availability import AvailabilityDefault, AvailabilityException  # noqa: E402
from tutor_scheduler.models.scheduling import BusyInterval, CreatedEvent, NotificationResult  # noqa: E402
from tutor_scheduler.services.policy_store import PolicyStore  # noqa: E402

MONDAY = date(2026, 1, 5)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return local_datetime(day, time(hour, minute))


class FakeBusySource:
    def __init__(self, intervals=None, error: Exception | None = None, delay: float = 0.0):
        self.intervals = list(intervals or [])
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, datetime, datetime]] = []

    async def get_busy_intervals(self, calendar_id, range_start, range_end):
        self.calls.append((calendar_id, range_start, range_end))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [
            interval for interval in self.intervals
            if interval.start < range_end and interval.end > range_start
        ]


class FakeEventSink:
    def __init__(self, error: Exception | None = None, busy_source: FakeBusySource | None = None, delay: float = 0.0):
        self.error = error
        self.busy_source = busy_source
        self.delay = delay
        self.events: list[dict] = []

    async def create_event(self, calendar_id, slot, attendees, metadata):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        event_id = f'evt-{len(self.events) + 1}'
        self.events.append({'calendar_id': calendar_id, 'slot': slot, 'attendees': attendees, 'metadata': metadata})
        if self.busy_source is not None:
            # The new event is visible to later busy queries, like the real calendar.
            self.busy_source.intervals.append(BusyInterval(slot.start, slot.end))
        return CreatedEvent(event_id=event_id, meeting_reference=f'https://meet.google.com/{event_id}')


class FakeDispatcher:
    def __init__(self, fail_kinds=(), raise_kinds=()):
        self.fail_kinds = set(fail_kinds)
        self.raise_kinds = set(raise_kinds)
        self.sent: list[tuple[str, str, dict]] = []

    async def send(self, recipient, template_kind, context):
        if template_kind in self.raise_kinds:
            raise RuntimeError('mail provider down')
        self.sent.append((recipient, template_kind, context))
        if template_kind in self.fail_kinds:
            return NotificationResult(recipient, template_kind, success=False, error='rejected')
        return NotificationResult(recipient, template_kind, success=True)


@pytest.fixture
def busy_source() -> FakeBusySource:
    return FakeBusySource()


@pytest.fixture
def unavailable_source() -> FakeBusySource:
    return FakeBusySource(error=BusyIntervalSourceUnavailable('Calendar could not be queried.'))


@pytest.fixture
def event_sink(busy_source) -> FakeEventSink:
    return FakeEventSink(busy_source=busy_source)


@pytest.fixture
def failing_event_sink() -> FakeEventSink:
    return FakeEventSink(error=CalendarServiceError('Calendar event could not be created.'))


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    tables = [AvailabilityDefault.__table__, AvailabilityException.__table__]
    Base.metadata.create_all(bind=engine, tables=tables)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine, tables=tables)
        engine.dispose()


@pytest.fixture
def policy_store(session_factory) -> PolicyStore:
    return PolicyStore(session_factory=session_factory, cache_ttl_seconds=0)
