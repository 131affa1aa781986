from datetime import time, timedelta

import pytest

from conftest import MONDAY, at
from tutor_scheduler.core.errors import InvalidRequestError
from tutor_scheduler.core.intervals import TimeRange
from tutor_scheduler.models.scheduling import BusyInterval, DateException, PolicySnapshot, Slot, WeeklyTemplate
from tutor_scheduler.services.availability_resolver import ResolvedDay, resolve_open_ranges
from tutor_scheduler.services.slot_generator import generate_slots, group_available_slots, slot_duration

ONE_HOUR = timedelta(minutes=60)


def open_day(start_hour: int, end_hour: int) -> ResolvedDay:
    time_range = TimeRange(at(MONDAY, start_hour), at(MONDAY, end_hour))
    return ResolvedDay(date=MONDAY, policy_ranges=[time_range], open_ranges=[time_range])


def test_monday_template_yields_eight_hourly_slots() -> None:
    snapshot = PolicySnapshot(templates={0: WeeklyTemplate(0, time(10, 0), time(18, 0))}, version='v1')
    days = resolve_open_ranges(MONDAY, MONDAY + timedelta(days=1), snapshot, [], [])

    available = group_available_slots(days, ONE_HOUR, now=at(MONDAY, 8))

    assert len(available) == 1
    assert available[0].date == MONDAY
    assert [slot.start for slot in available[0].slots] == [at(MONDAY, hour) for hour in range(10, 18)]
    assert available[0].slots[-1].end == at(MONDAY, 18)


def test_slots_starting_at_or_before_now_are_dropped() -> None:
    slots = generate_slots(open_day(9, 17), ONE_HOUR, now=at(MONDAY, 14, 30))

    assert slots[0] == Slot(at(MONDAY, 15), at(MONDAY, 16))
    assert all(slot.start > at(MONDAY, 14, 30) for slot in slots)


def test_slot_starting_exactly_now_is_dropped() -> None:
    slots = generate_slots(open_day(9, 12), ONE_HOUR, now=at(MONDAY, 10))

    assert slots == [Slot(at(MONDAY, 11), at(MONDAY, 12))]


def test_trailing_partial_slot_is_not_emitted() -> None:
    day = ResolvedDay(
        date=MONDAY,
        policy_ranges=[TimeRange(at(MONDAY, 9), at(MONDAY, 11, 30))],
        open_ranges=[TimeRange(at(MONDAY, 9), at(MONDAY, 11, 30))],
    )

    slots = generate_slots(day, ONE_HOUR, now=at(MONDAY, 0))

    assert slots == [Slot(at(MONDAY, 9), at(MONDAY, 10)), Slot(at(MONDAY, 10), at(MONDAY, 11))]


def test_busy_interval_removes_overlapping_slot_without_shifting_the_grid() -> None:
    snapshot = PolicySnapshot(templates={0: WeeklyTemplate(0, time(10, 0), time(12, 0))}, version='v1')
    busy = [BusyInterval(at(MONDAY, 10, 30), at(MONDAY, 10, 45))]
    days = resolve_open_ranges(MONDAY, MONDAY + timedelta(days=1), snapshot, [], busy)

    slots = generate_slots(days[0], ONE_HOUR, now=at(MONDAY, 0))

    assert Slot(at(MONDAY, 10), at(MONDAY, 11)) not in slots
    assert all(slot.start.minute == 0 for slot in slots)
    assert slots == [Slot(at(MONDAY, 11), at(MONDAY, 12))]


def test_slots_align_to_the_range_left_by_an_exception() -> None:
    snapshot = PolicySnapshot(templates={0: WeeklyTemplate(0, time(9, 0), time(13, 0))}, version='v1')
    exception = DateException(date=MONDAY, start_time=time(9, 0), end_time=time(9, 30))
    days = resolve_open_ranges(MONDAY, MONDAY + timedelta(days=1), snapshot, [exception], [])

    slots = generate_slots(days[0], ONE_HOUR, now=at(MONDAY, 0))

    assert [slot.start for slot in slots] == [at(MONDAY, 9, 30), at(MONDAY, 10, 30), at(MONDAY, 11, 30)]


def test_days_without_slots_are_omitted() -> None:
    closed = ResolvedDay(date=MONDAY + timedelta(days=1), policy_ranges=[], open_ranges=[])
    fully_past = open_day(9, 10)

    available = group_available_slots([closed, fully_past], ONE_HOUR, now=at(MONDAY, 23))

    assert available == []


@pytest.mark.parametrize('minutes', [0, -15])
def test_non_positive_duration_is_rejected(minutes: int) -> None:
    with pytest.raises(InvalidRequestError):
        slot_duration(minutes)

    with pytest.raises(InvalidRequestError):
        generate_slots(open_day(9, 17), timedelta(minutes=minutes), now=at(MONDAY, 0))
