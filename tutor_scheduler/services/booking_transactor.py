"""Turn one chosen slot into a confirmed calendar booking.

Sequence: validate, re-check the calendar for the exact slot, create the
event, then send notifications on a best-effort basis. The calendar is the
only source of truth and this service holds no lock on it, so the re-check is
mandatory and an unreachable calendar aborts the booking. Within one process
an advisory lock per slot serializes the re-check and the event creation.
"""

import asyncio
import dataclasses
import enum
import functools
import logging
import re
import time as monotonic_time
import uuid
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timedelta
from typing import Callable, Hashable

from tutor_scheduler.core import clock, config
from tutor_scheduler.core.errors import (
    BusyIntervalSourceUnavailable,
    CalendarServiceError,
    InvalidRequestError,
    NotificationDispatchError,
    PastSlotError,
    SlotConflictError,
)
from tutor_scheduler.core.intervals import overlaps
from tutor_scheduler.models.scheduling import (
    Booking,
    BookingOutcome,
    CreatedEvent,
    NotificationResult,
    Requester,
    Slot,
)
from tutor_scheduler.services.google_calendar import BusyIntervalSource, CalendarEventSink
from tutor_scheduler.services.notifications import (
    BOOKING_ADMIN_NOTICE,
    BOOKING_CONFIRMATION,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^[0-9+\-() ]{6,30}$')
MAX_NAME_LENGTH = 100
MAX_COMPANY_LENGTH = 200
MAX_MESSAGE_LENGTH = 2000
MAX_IDEMPOTENCY_KEY_LENGTH = 128


class BookingState(str, enum.Enum):
    REQUESTED = 'requested'
    VALIDATING = 'validating'
    RECHECKING = 'rechecking'
    CONFLICT = 'conflict'
    COMMITTING = 'committing'
    COMMIT_FAILED = 'commit_failed'
    COMMITTED = 'committed'
    NOTIFYING = 'notifying_best_effort'
    DONE = 'done'


def _clean_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


def validate_requester(requester: Requester) -> Requester:
    name = (requester.name or '').strip()
    if not name:
        raise InvalidRequestError('Name is required.', field='requester.name')
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidRequestError(f'Name must be {MAX_NAME_LENGTH} characters or fewer.', field='requester.name')

    email = (requester.email or '').strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise InvalidRequestError('A valid email address is required.', field='requester.email')

    phone = _clean_optional(requester.phone)
    if phone is not None and not PHONE_PATTERN.match(phone):
        raise InvalidRequestError('Phone number is not valid.', field='requester.phone')

    company = _clean_optional(requester.company)
    if company is not None and len(company) > MAX_COMPANY_LENGTH:
        raise InvalidRequestError(
            f'Company must be {MAX_COMPANY_LENGTH} characters or fewer.',
            field='requester.company',
        )

    message = _clean_optional(requester.message)
    if message is not None and len(message) > MAX_MESSAGE_LENGTH:
        raise InvalidRequestError(
            f'Message must be {MAX_MESSAGE_LENGTH} characters or fewer.',
            field='requester.message',
        )

    return dataclasses.replace(requester, name=name, email=email, phone=phone, company=company, message=message)


def make_slot(start: datetime, end: datetime) -> Slot:
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidRequestError('Slot times must include a UTC offset.', field='slot')
    if end <= start:
        raise InvalidRequestError('Slot end must be after its start.', field='slot.end')
    return Slot(clock.to_business_time(start), clock.to_business_time(end))


class LockRegistry:
    """In-process advisory locks, created on first use and dropped when idle."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


class IdempotencyCache:
    def __init__(self, ttl_seconds: float, clock_fn: Callable[[], float] = monotonic_time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock_fn
        self._entries: dict[str, tuple[float, BookingOutcome]] = {}

    def get(self, key: str) -> BookingOutcome | None:
        now = self._clock()
        expired = [stored_key for stored_key, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl_seconds]
        for stored_key in expired:
            del self._entries[stored_key]
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def put(self, key: str, outcome: BookingOutcome) -> None:
        self._entries[key] = (self._clock(), outcome)


class BookingTransactor:
    def __init__(
        self,
        busy_source: BusyIntervalSource,
        event_sink: CalendarEventSink,
        dispatcher: NotificationDispatcher,
        calendar_id: str | None = None,
        admin_email: str | None = None,
        slot_duration_minutes: int | None = None,
        busy_timeout_seconds: float | None = None,
        event_timeout_seconds: float | None = None,
        now: Callable[[], datetime] = clock.now,
        slot_locks: LockRegistry | None = None,
        idempotency_cache: IdempotencyCache | None = None,
    ):
        self.busy_source = busy_source
        self.event_sink = event_sink
        self.dispatcher = dispatcher
        self.calendar_id = calendar_id or config.GOOGLE_CALENDAR_ID
        self.admin_email = admin_email or config.ADMIN_EMAIL
        self.slot_duration = timedelta(
            minutes=config.SLOT_DURATION_MINUTES if slot_duration_minutes is None else slot_duration_minutes
        )
        self.busy_timeout_seconds = (
            config.BUSY_SOURCE_TIMEOUT_SECONDS if busy_timeout_seconds is None else busy_timeout_seconds
        )
        self.event_timeout_seconds = (
            config.CALENDAR_EVENT_TIMEOUT_SECONDS if event_timeout_seconds is None else event_timeout_seconds
        )
        self._now = now
        self.slot_locks = slot_locks or LockRegistry()
        self.key_locks = LockRegistry()
        self.idempotency_cache = idempotency_cache or IdempotencyCache(config.IDEMPOTENCY_TTL_SECONDS)

    def _transition(self, booking_ref: str, state: BookingState) -> None:
        logger.info('Booking %s -> %s', booking_ref, state.value)

    def validate(self, slot: Slot, requester: Requester) -> Requester:
        if slot.start <= self._now():
            raise PastSlotError('The selected time is no longer available. Please choose another slot.', field='slot')
        if slot.duration != self.slot_duration:
            raise InvalidRequestError(
                f'Slots must be {int(self.slot_duration.total_seconds() // 60)} minutes long.',
                field='slot',
            )
        return validate_requester(requester)

    async def recheck(self, slot: Slot) -> None:
        try:
            busy_intervals = await asyncio.wait_for(
                self.busy_source.get_busy_intervals(self.calendar_id, slot.start, slot.end),
                timeout=self.busy_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise BusyIntervalSourceUnavailable('Calendar re-check timed out; booking aborted.') from exc

        if any(overlaps(busy, slot) for busy in busy_intervals):
            raise SlotConflictError(
                'Sorry, this time has just been booked. Please choose another slot.',
                field='slot',
            )

    def build_event_metadata(self, requester: Requester) -> dict:
        summary = f'Free consultation: {requester.name}'
        if requester.company:
            summary += f' ({requester.company})'

        lines = [f'Name: {requester.name}', f'Email: {requester.email}']
        if requester.phone:
            lines.append(f'Phone: {requester.phone}')
        if requester.company:
            lines.append(f'Company: {requester.company}')
        if requester.message:
            lines.append(f'Message:\n{requester.message}')
        lines.extend(['', '---', config.BUSINESS_NAME, 'Free consultation booking'])

        return {
            'summary': summary,
            'description': '\n'.join(lines),
            'conference_request_id': f'booking-{uuid.uuid4().hex}',
        }

    async def commit(self, slot: Slot, requester: Requester) -> CreatedEvent:
        attendees = [
            {'email': requester.email, 'displayName': requester.name},
            {'email': self.admin_email},
        ]
        try:
            return await asyncio.wait_for(
                self.event_sink.create_event(self.calendar_id, slot, attendees, self.build_event_metadata(requester)),
                timeout=self.event_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                'Calendar event creation for %s timed out; the event may still appear on the calendar.',
                slot.start.isoformat(),
            )
            raise CalendarServiceError('Calendar event creation timed out.') from exc

    def notification_context(self, booking: Booking, requester: Requester) -> dict:
        start = booking.slot.start
        return {
            'business_name': config.BUSINESS_NAME,
            'support_email': config.SUPPORT_EMAIL,
            'name': requester.name,
            'email': requester.email,
            'phone': requester.phone,
            'company': requester.company,
            'message': requester.message,
            'date_label': start.strftime('%A, %B %d, %Y'),
            'time_label': start.strftime('%H:%M'),
            'duration_minutes': int(booking.slot.duration.total_seconds() // 60),
            'meeting_url': booking.meeting_reference,
            'event_id': booking.calendar_event_id,
        }

    async def _notify_one(self, recipient: str, template_kind: str, context: dict) -> NotificationResult:
        try:
            return await self.dispatcher.send(recipient, template_kind, context)
        except Exception as exc:
            error = NotificationDispatchError(f'{template_kind} to {recipient} failed: {exc}')
            logger.exception(error.message)
            return NotificationResult(recipient, template_kind, success=False, error=str(exc))

    async def notify(self, booking: Booking, requester: Requester) -> list[NotificationResult]:
        context = self.notification_context(booking, requester)
        results = [
            await self._notify_one(requester.email, BOOKING_CONFIRMATION, context),
            await self._notify_one(self.admin_email, BOOKING_ADMIN_NOTICE, context),
        ]
        for result in results:
            if not result.success:
                logger.warning(
                    'Booking %s kept despite %s failure: %s',
                    booking.calendar_event_id,
                    result.template_kind,
                    result.error,
                )
        return results

    async def _commit_and_notify(
        self, booking_ref: str, slot: Slot, requester: Requester, idempotency_key: str | None
    ) -> BookingOutcome:
        self._transition(booking_ref, BookingState.COMMITTING)
        try:
            created = await self.commit(slot, requester)
        except CalendarServiceError:
            self._transition(booking_ref, BookingState.COMMIT_FAILED)
            raise

        booking = Booking(
            student_identity=requester.email,
            slot=slot,
            calendar_event_id=created.event_id,
            meeting_reference=created.meeting_reference,
            created_at=self._now(),
        )
        self._transition(booking_ref, BookingState.COMMITTED)
        if idempotency_key:
            self.idempotency_cache.put(idempotency_key, BookingOutcome(booking=booking))

        self._transition(booking_ref, BookingState.NOTIFYING)
        outcome = BookingOutcome(booking=booking, notifications=await self.notify(booking, requester))
        if idempotency_key:
            self.idempotency_cache.put(idempotency_key, outcome)
        self._transition(booking_ref, BookingState.DONE)
        return outcome

    def _replay(self, booking_ref: str, previous: BookingOutcome, slot: Slot) -> BookingOutcome:
        if previous.booking.slot != slot:
            raise InvalidRequestError(
                'idempotency_key was already used for a different slot.',
                field='idempotency_key',
            )
        logger.info('Booking %s replayed from idempotency cache.', booking_ref)
        return previous

    async def _locked_book(
        self, booking_ref: str, slot: Slot, requester: Requester, idempotency_key: str | None
    ) -> BookingOutcome:
        key_lock = self.key_locks.hold(idempotency_key) if idempotency_key else nullcontext()
        async with key_lock, self.slot_locks.hold((slot.start, slot.end)):
            if idempotency_key:
                previous = self.idempotency_cache.get(idempotency_key)
                if previous is not None:
                    return self._replay(booking_ref, previous, slot)

            self._transition(booking_ref, BookingState.RECHECKING)
            try:
                await self.recheck(slot)
            except SlotConflictError:
                self._transition(booking_ref, BookingState.CONFLICT)
                raise

            return await self._commit_and_notify(booking_ref, slot, requester, idempotency_key)

    @staticmethod
    def _log_abandoned(booking_ref: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning('Booking %s failed after its caller went away: %s', booking_ref, error)
        else:
            logger.info('Booking %s completed after its caller went away.', booking_ref)

    async def book(self, slot: Slot, requester: Requester, idempotency_key: str | None = None) -> BookingOutcome:
        booking_ref = idempotency_key or uuid.uuid4().hex[:12]
        self._transition(booking_ref, BookingState.REQUESTED)

        if idempotency_key is not None and not 0 < len(idempotency_key) <= MAX_IDEMPOTENCY_KEY_LENGTH:
            raise InvalidRequestError('idempotency_key is not valid.', field='idempotency_key')

        # A retry returns the stored outcome even once its slot has started.
        if idempotency_key:
            previous = self.idempotency_cache.get(idempotency_key)
            if previous is not None:
                return self._replay(booking_ref, previous, slot)

        self._transition(booking_ref, BookingState.VALIDATING)
        requester = self.validate(slot, requester)

        # The locks are held by the shielded task, so a cancelled caller cannot
        # release the slot while its event is still being created.
        task = asyncio.ensure_future(self._locked_book(booking_ref, slot, requester, idempotency_key))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(functools.partial(self._log_abandoned, booking_ref))
            raise
