"""Read/write access to the weekly template and the date exceptions.

The weekly template is read far more often than it is written, so the store
keeps the last snapshot for ``POLICY_CACHE_TTL_SECONDS`` and drops it on every
write. A stale snapshot only changes which slots are offered; bookings are
always re-checked against the calendar.
"""

import logging
import time as monotonic_time
from datetime import date
from threading import Lock
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tutor_scheduler.core import config
from tutor_scheduler.core.errors import PolicyConflictError, PolicyNotFoundError, PolicyValidationError
from tutor_scheduler.database import SessionLocal
from tutor_scheduler.models.availability import AvailabilityDefault, AvailabilityException
from tutor_scheduler.models.scheduling import DateException, PolicySnapshot, WeeklyTemplate

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 255


def validate_weekly_template(templates: list[WeeklyTemplate]) -> None:
    seen_days: set[int] = set()
    for template in templates:
        if not 0 <= template.day_of_week <= 6:
            raise PolicyValidationError('day_of_week must be between 0 and 6.', field='day_of_week')
        if template.day_of_week in seen_days:
            raise PolicyValidationError(
                f'Duplicate template for weekday {template.day_of_week}.',
                field='day_of_week',
            )
        seen_days.add(template.day_of_week)
        if template.enabled and template.start_time >= template.end_time:
            raise PolicyValidationError(
                f'start_time must be before end_time for weekday {template.day_of_week}.',
                field='start_time',
            )


def validate_exception(exception: DateException) -> None:
    if (exception.start_time is None) != (exception.end_time is None):
        raise PolicyValidationError(
            'start_time and end_time must both be set or both be empty.',
            field='start_time' if exception.start_time is None else 'end_time',
        )
    if not exception.is_full_day and exception.start_time >= exception.end_time:
        raise PolicyValidationError('start_time must be before end_time.', field='start_time')
    if exception.reason and len(exception.reason) > MAX_REASON_LENGTH:
        raise PolicyValidationError(
            f'reason must be {MAX_REASON_LENGTH} characters or fewer.',
            field='reason',
        )


def _to_template(row: AvailabilityDefault) -> WeeklyTemplate:
    return WeeklyTemplate(
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        enabled=bool(row.is_enabled),
    )


def _to_exception(row: AvailabilityException) -> DateException:
    return DateException(
        id=row.id,
        date=row.date,
        start_time=row.start_time,
        end_time=row.end_time,
        reason=row.reason,
    )


def _snapshot_version(rows: list[AvailabilityDefault]) -> str:
    if not rows:
        return 'empty'
    latest = max(row.updated_at for row in rows)
    return f'{len(rows)}:{latest.isoformat()}'


class PolicyStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = monotonic_time.monotonic,
    ):
        self._session_factory = session_factory
        self._cache_ttl_seconds = (
            config.POLICY_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._clock = clock
        self._lock = Lock()
        self._cached_snapshot: PolicySnapshot | None = None
        self._cached_at = 0.0

    def invalidate(self) -> None:
        with self._lock:
            self._cached_snapshot = None

    def get_weekly_template(self) -> PolicySnapshot:
        with self._lock:
            if (
                self._cached_snapshot is not None
                and self._clock() - self._cached_at < self._cache_ttl_seconds
            ):
                return self._cached_snapshot

        with self._session_factory() as db:
            rows = db.query(AvailabilityDefault).order_by(AvailabilityDefault.day_of_week.asc()).all()
            snapshot = PolicySnapshot(
                templates={row.day_of_week: _to_template(row) for row in rows},
                version=_snapshot_version(rows),
            )

        with self._lock:
            self._cached_snapshot = snapshot
            self._cached_at = self._clock()
        return snapshot

    def replace_weekly_template(self, templates: list[WeeklyTemplate]) -> PolicySnapshot:
        validate_weekly_template(templates)

        with self._session_factory() as db:
            try:
                db.query(AvailabilityDefault).delete()
                db.add_all(
                    AvailabilityDefault(
                        day_of_week=template.day_of_week,
                        start_time=template.start_time,
                        end_time=template.end_time,
                        is_enabled=template.enabled,
                    )
                    for template in templates
                )
                db.commit()
            except Exception:
                db.rollback()
                raise

        self.invalidate()
        logger.info('Weekly availability template replaced (%d rows).', len(templates))
        return self.get_weekly_template()

    def get_exceptions(self, range_start: date, range_end: date) -> list[DateException]:
        with self._session_factory() as db:
            rows = db.query(AvailabilityException).filter(
                AvailabilityException.date >= range_start,
                AvailabilityException.date < range_end,
            ).order_by(AvailabilityException.date.asc(), AvailabilityException.id.asc()).all()
            return [_to_exception(row) for row in rows]

    def list_exceptions(self, from_date: date | None = None) -> list[DateException]:
        with self._session_factory() as db:
            query = db.query(AvailabilityException)
            if from_date is not None:
                query = query.filter(AvailabilityException.date >= from_date)
            rows = query.order_by(AvailabilityException.date.asc(), AvailabilityException.start_time.asc()).all()
            return [_to_exception(row) for row in rows]

    def create_exception(self, exception: DateException) -> DateException:
        validate_exception(exception)

        with self._session_factory() as db:
            try:
                same_day = db.query(AvailabilityException).filter(
                    AvailabilityException.date == exception.date,
                ).all()
                self._check_conflicts(exception, [_to_exception(row) for row in same_day])

                row = AvailabilityException(
                    date=exception.date,
                    start_time=exception.start_time,
                    end_time=exception.end_time,
                    reason=exception.reason,
                    type='unavailable',
                )
                db.add(row)
                db.commit()
                db.refresh(row)
                created = _to_exception(row)
            except IntegrityError as exc:
                db.rollback()
                raise PolicyConflictError('An exception already starts at this time.', field='start_time') from exc
            except Exception:
                db.rollback()
                raise

        logger.info('Availability exception created for %s (id=%s).', created.date, created.id)
        return created

    def delete_exception(self, exception_id: int) -> None:
        with self._session_factory() as db:
            try:
                row = db.query(AvailabilityException).filter(AvailabilityException.id == exception_id).first()
                if row is None:
                    raise PolicyNotFoundError('Availability exception not found.', field='exception_id')
                db.delete(row)
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info('Availability exception %s deleted.', exception_id)

    @staticmethod
    def _check_conflicts(candidate: DateException, existing: list[DateException]) -> None:
        for other in existing:
            if other.is_full_day:
                raise PolicyConflictError('This date is already fully excluded.', field='date')
            if candidate.is_full_day:
                raise PolicyConflictError(
                    'Remove the existing exceptions on this date before excluding the whole day.',
                    field='date',
                )
            if other.start_time == candidate.start_time:
                raise PolicyConflictError('An exception already starts at this time.', field='start_time')
            if candidate.start_time < other.end_time and candidate.end_time > other.start_time:
                raise PolicyConflictError(
                    'This window overlaps an existing exception on the same date.',
                    field='start_time',
                )


policy_store = PolicyStore()


def get_policy_store() -> PolicyStore:
    return policy_store
