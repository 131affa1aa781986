from fastapi import HTTPException, status

from tutor_scheduler.core.errors import (
    BusyIntervalSourceUnavailable,
    CalendarServiceError,
    InvalidRequestError,
    PastSlotError,
    PolicyConflictError,
    PolicyNotFoundError,
    SchedulingError,
    SlotConflictError,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

STATUS_CODES = [
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (PastSlotError, status.HTTP_400_BAD_REQUEST),
    (PolicyConflictError, status.HTTP_409_CONFLICT),
    (PolicyNotFoundError, status.HTTP_404_NOT_FOUND),
    (SlotConflictError, status.HTTP_409_CONFLICT),
    (BusyIntervalSourceUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (CalendarServiceError, status.HTTP_502_BAD_GATEWAY),
]

# The client should fetch a fresh slot list instead of resubmitting.
REFRESH_SLOTS_ERRORS = (PastSlotError, SlotConflictError)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, mapped_status in STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = mapped_status
            break

    detail = exc.to_detail()
    if isinstance(exc, REFRESH_SLOTS_ERRORS):
        detail['refresh_slots'] = True
    return HTTPException(status_code=status_code, detail=detail)


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )
