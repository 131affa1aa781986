from datetime import datetime, timedelta

from tutor_scheduler.core.errors import InvalidRequestError
from tutor_scheduler.core.intervals import TimeRange
from tutor_scheduler.models.scheduling import DayAvailability, Slot
from tutor_scheduler.services.availability_resolver import ResolvedDay


def slot_duration(minutes: int) -> timedelta:
    if minutes <= 0:
        raise InvalidRequestError('Slot duration must be positive.', field='slot_duration')
    return timedelta(minutes=minutes)


def iterate_slot_starts(time_range: TimeRange, duration: timedelta):
    current = time_range.start
    while current + duration <= time_range.end:
        yield current
        current += duration


def generate_slots(day: ResolvedDay, duration: timedelta, now: datetime) -> list[Slot]:
    """Fixed-length slots aligned to each policy range's start.

    A slot is kept only when it lies entirely inside one open range (so it
    touches no busy time) and starts after ``now``.
    """
    if duration <= timedelta(0):
        raise InvalidRequestError('Slot duration must be positive.', field='slot_duration')

    slots: list[Slot] = []
    for policy_range in day.policy_ranges:
        for slot_start in iterate_slot_starts(policy_range, duration):
            if slot_start <= now:
                continue
            slot = Slot(slot_start, slot_start + duration)
            if any(open_range.contains(slot) for open_range in day.open_ranges):
                slots.append(slot)

    return sorted(slots, key=lambda slot: slot.start)


def group_available_slots(days: list[ResolvedDay], duration: timedelta, now: datetime) -> list[DayAvailability]:
    available: list[DayAvailability] = []
    for day in days:
        slots = generate_slots(day, duration, now)
        if slots:
            available.append(DayAvailability(date=day.date, slots=slots))
    return available
