"""Value types passed between the policy store, the resolver and the transactor."""

from dataclasses import dataclass, field
from datetime import date, datetime, time

from tutor_scheduler.core.intervals import TimeRange


@dataclass(frozen=True)
class WeeklyTemplate:
    day_of_week: int
    start_time: time
    end_time: time
    enabled: bool = True


@dataclass(frozen=True)
class DateException:
    date: date
    start_time: time | None = None
    end_time: time | None = None
    reason: str | None = None
    id: int | None = None

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable weekly template, fetched once per resolution."""

    templates: dict[int, WeeklyTemplate]
    version: str

    def template_for(self, day: date) -> WeeklyTemplate | None:
        return self.templates.get(day.weekday())


@dataclass(frozen=True, order=True)
class BusyInterval(TimeRange):
    pass


@dataclass(frozen=True, order=True)
class Slot(TimeRange):
    pass


@dataclass(frozen=True)
class DayAvailability:
    date: date
    slots: list[Slot]


@dataclass(frozen=True)
class Requester:
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class CreatedEvent:
    event_id: str
    meeting_reference: str | None = None


@dataclass(frozen=True)
class Booking:
    student_identity: str
    slot: Slot
    calendar_event_id: str
    meeting_reference: str | None
    created_at: datetime


@dataclass(frozen=True)
class NotificationResult:
    recipient: str
    template_kind: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class BookingOutcome:
    """A committed booking plus the best-effort notification results."""

    booking: Booking
    notifications: list[NotificationResult] = field(default_factory=list)

    @property
    def notifications_ok(self) -> bool:
        return all(result.success for result in self.notifications)
