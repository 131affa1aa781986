from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from tutor_scheduler.auth.dependencies import get_current_admin
from tutor_scheduler.core.errors import SchedulingError
from tutor_scheduler.database import ensure_policy_schema
from tutor_scheduler.models.scheduling import DateException, PolicySnapshot, WeeklyTemplate
from tutor_scheduler.routes.http_errors import database_unavailable, to_http_exception
from tutor_scheduler.services.policy_store import MAX_REASON_LENGTH, PolicyStore, get_policy_store

router = APIRouter(tags=['availability'])


class WeeklyTemplatePayload(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    enabled: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)


class ReplaceDefaultsRequest(BaseModel):
    defaults: list[WeeklyTemplatePayload]


class DefaultsResponse(BaseModel):
    version: str
    defaults: list[WeeklyTemplatePayload]


class CreateExceptionRequest(BaseModel):
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def truncate_to_minute(cls, value: time | None) -> time | None:
        if value is None:
            return None
        return value.replace(second=0, microsecond=0)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')

        return normalized


class ExceptionResponse(BaseModel):
    id: int
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None
    full_day: bool


def ensure_database_ready() -> None:
    try:
        ensure_policy_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def to_defaults_response(snapshot: PolicySnapshot) -> DefaultsResponse:
    return DefaultsResponse(
        version=snapshot.version,
        defaults=[
            WeeklyTemplatePayload(
                day_of_week=template.day_of_week,
                start_time=template.start_time,
                end_time=template.end_time,
                enabled=template.enabled,
            )
            for _, template in sorted(snapshot.templates.items())
        ],
    )


def to_exception_response(exception: DateException) -> ExceptionResponse:
    return ExceptionResponse(
        id=exception.id,
        date=exception.date,
        start_time=exception.start_time,
        end_time=exception.end_time,
        reason=exception.reason,
        full_day=exception.is_full_day,
    )


@router.get('/defaults', response_model=DefaultsResponse)
def get_weekly_defaults(
    _admin: str = Depends(get_current_admin),
    store: PolicyStore = Depends(get_policy_store),
):
    ensure_database_ready()

    try:
        return to_defaults_response(store.get_weekly_template())
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/defaults', response_model=DefaultsResponse)
def replace_weekly_defaults(
    data: ReplaceDefaultsRequest,
    _admin: str = Depends(get_current_admin),
    store: PolicyStore = Depends(get_policy_store),
):
    ensure_database_ready()

    try:
        snapshot = store.replace_weekly_template(
            [
                WeeklyTemplate(
                    day_of_week=row.day_of_week,
                    start_time=row.start_time,
                    end_time=row.end_time,
                    enabled=row.enabled,
                )
                for row in data.defaults
            ]
        )
        return to_defaults_response(snapshot)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/exceptions', response_model=list[ExceptionResponse])
def list_exceptions(
    from_date: date | None = Query(default=None),
    _admin: str = Depends(get_current_admin),
    store: PolicyStore = Depends(get_policy_store),
):
    ensure_database_ready()

    try:
        return [to_exception_response(exception) for exception in store.list_exceptions(from_date)]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/exceptions', response_model=ExceptionResponse, status_code=status.HTTP_201_CREATED)
def create_exception(
    data: CreateExceptionRequest,
    _admin: str = Depends(get_current_admin),
    store: PolicyStore = Depends(get_policy_store),
):
    ensure_database_ready()

    try:
        created = store.create_exception(
            DateException(
                date=data.date,
                start_time=data.start_time,
                end_time=data.end_time,
                reason=data.reason,
            )
        )
        return to_exception_response(created)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/exceptions/{exception_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_exception(
    exception_id: int,
    _admin: str = Depends(get_current_admin),
    store: PolicyStore = Depends(get_policy_store),
):
    ensure_database_ready()

    try:
        store.delete_exception(exception_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
