import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError

from tutor_scheduler.core import clock, config
from tutor_scheduler.core.errors import SchedulingError
from tutor_scheduler.models.scheduling import Requester
from tutor_scheduler.routes.http_errors import database_unavailable, to_http_exception
from tutor_scheduler.services.availability_resolver import AvailabilityResolver
from tutor_scheduler.services.booking_transactor import BookingTransactor, make_slot
from tutor_scheduler.services.google_calendar import GoogleCalendarClient, get_calendar_client
from tutor_scheduler.services.notifications import get_notification_dispatcher
from tutor_scheduler.services.policy_store import PolicyStore, get_policy_store
from tutor_scheduler.services.slot_generator import group_available_slots, slot_duration

router = APIRouter(tags=['booking'])

logger = logging.getLogger(__name__)

_booking_transactor: BookingTransactor | None = None


class SlotPayload(BaseModel):
    start: datetime
    end: datetime


class RequesterPayload(BaseModel):
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    message: str | None = None

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ReserveRequest(BaseModel):
    slot: SlotPayload
    requester: RequesterPayload
    idempotency_key: str | None = None


class SlotResponse(BaseModel):
    start: datetime
    end: datetime


class DaySlotsResponse(BaseModel):
    date: date
    slots: list[SlotResponse]


class SlotsMetaResponse(BaseModel):
    start: date
    end: date
    timezone: str
    slot_duration: int
    policy_version: str


class SlotsResponse(BaseModel):
    available_slots: list[DaySlotsResponse]
    meta: SlotsMetaResponse


class BookingResponse(BaseModel):
    id: str
    student_identity: str
    start: datetime
    end: datetime
    meeting_reference: str | None = None
    created_at: datetime


class NotificationResponse(BaseModel):
    template_kind: str
    success: bool


class ReserveResponse(BaseModel):
    success: bool
    message: str
    booking: BookingResponse
    notifications: list[NotificationResponse]


def get_now() -> datetime:
    return clock.now()


def get_availability_resolver(
    policy_store: PolicyStore = Depends(get_policy_store),
    calendar_client: GoogleCalendarClient = Depends(get_calendar_client),
) -> AvailabilityResolver:
    return AvailabilityResolver(policy_store, calendar_client)


def get_booking_transactor() -> BookingTransactor:
    # One instance per process so the slot locks and idempotency cache are shared.
    global _booking_transactor

    if _booking_transactor is None:
        calendar_client = get_calendar_client()
        _booking_transactor = BookingTransactor(
            busy_source=calendar_client,
            event_sink=calendar_client,
            dispatcher=get_notification_dispatcher(),
        )
    return _booking_transactor


@router.get('/slots', response_model=SlotsResponse)
async def list_available_slots(
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    days: int = Query(default=config.DEFAULT_RANGE_DAYS, ge=1, le=config.MAX_RANGE_DAYS),
    resolver: AvailabilityResolver = Depends(get_availability_resolver),
    now: datetime = Depends(get_now),
):
    range_start = start or (now.date() + timedelta(days=1))
    range_end = end or (range_start + timedelta(days=days))

    try:
        duration = slot_duration(config.SLOT_DURATION_MINUTES)
        resolution = await resolver.resolve(range_start, range_end)
        available = group_available_slots(resolution.days, duration, now)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception('Policy store unavailable while resolving slots.')
        raise database_unavailable() from exc

    return SlotsResponse(
        available_slots=[
            DaySlotsResponse(
                date=day.date,
                slots=[SlotResponse(start=slot.start, end=slot.end) for slot in day.slots],
            )
            for day in available
        ],
        meta=SlotsMetaResponse(
            start=range_start,
            end=range_end,
            timezone=config.BUSINESS_TIMEZONE,
            slot_duration=config.SLOT_DURATION_MINUTES,
            policy_version=resolution.policy_version,
        ),
    )


@router.post('/reserve', response_model=ReserveResponse, status_code=status.HTTP_201_CREATED)
async def reserve_slot(
    data: ReserveRequest,
    transactor: BookingTransactor = Depends(get_booking_transactor),
):
    try:
        slot = make_slot(data.slot.start, data.slot.end)
        outcome = await transactor.book(
            slot,
            Requester(
                name=data.requester.name,
                email=data.requester.email,
                phone=data.requester.phone,
                company=data.requester.company,
                message=data.requester.message,
            ),
            idempotency_key=data.idempotency_key,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc

    booking = outcome.booking
    return ReserveResponse(
        success=True,
        message='Your booking is confirmed.',
        booking=BookingResponse(
            id=booking.calendar_event_id,
            student_identity=booking.student_identity,
            start=booking.slot.start,
            end=booking.slot.end,
            meeting_reference=booking.meeting_reference,
            created_at=booking.created_at,
        ),
        notifications=[
            NotificationResponse(template_kind=result.template_kind, success=result.success)
            for result in outcome.notifications
        ],
    )
