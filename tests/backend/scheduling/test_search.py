from datetime import date, time

import pytest

from backend.scheduling.domain import (
    AvailabilitySource,
    DoctorSummary,
    RecurringAvailability,
    SearchCriteria,
    SingleAvailability,
    TimeSlot,
)
from backend.scheduling.errors import EmptyQuery
from backend.scheduling.search import matches_name, search

MONDAY = date(2024, 6, 10)

DOCTORS = [
    DoctorSummary(1, 'Alice Brown'),
    DoctorSummary(2, 'alan smith'),
    DoctorSummary(3, 'Carl Adams'),
    DoctorSummary(4, 'Alice Brown'),
    DoctorSummary(5, 'Dana Ortiz'),
]


def weekly(doctor_id: int, start: str = '09:00', end: str = '11:00') -> RecurringAvailability:
    return RecurringAvailability(doctor_id, 'Monday', (TimeSlot(start, end),), id=doctor_id)


RECORDS = [weekly(1), weekly(2), weekly(3, '13:00', '14:00'), weekly(4)]


def ids(matches) -> list[int]:
    return [match.doctor.id for match in matches]


def test_date_search_orders_by_name_then_id() -> None:
    matches = search(SearchCriteria(date=MONDAY), DOCTORS, RECORDS, today=MONDAY)

    assert ids(matches) == [2, 1, 4, 3]
    assert all(match.matched_date == MONDAY for match in matches)
    assert matches[0].source is AvailabilitySource.FROM_RECURRING


def test_identical_searches_return_identical_results() -> None:
    criteria = SearchCriteria(date=MONDAY, name_prefix='al')

    first = search(criteria, DOCTORS, RECORDS, today=MONDAY)
    second = search(criteria, list(reversed(DOCTORS)), list(reversed(RECORDS)), today=MONDAY)

    assert first == second


def test_name_search_without_date_checks_today() -> None:
    matches = search(SearchCriteria(name_prefix='ALI'), DOCTORS, RECORDS, today=MONDAY)

    assert ids(matches) == [1, 4]
    assert matches[0].matched_date == MONDAY


def test_name_search_matches_last_name() -> None:
    matches = search(SearchCriteria(date=MONDAY, name_prefix='ada'), DOCTORS, RECORDS, today=MONDAY)

    assert ids(matches) == [3]


def test_name_search_on_day_without_availability_is_empty() -> None:
    assert search(SearchCriteria(name_prefix='alice'), DOCTORS, RECORDS, today=date(2024, 6, 11)) == []


@pytest.mark.parametrize('name_prefix', [None, '', '   '])
def test_search_without_date_or_name_is_rejected(name_prefix: str | None) -> None:
    with pytest.raises(EmptyQuery):
        search(SearchCriteria(name_prefix=name_prefix, time=time(9, 0)), DOCTORS, RECORDS, today=MONDAY)


def test_fully_booked_and_blocked_doctors_are_excluded() -> None:
    records = [
        *RECORDS,
        SingleAvailability(1, MONDAY, (), id=20),
        SingleAvailability(
            2,
            MONDAY,
            (TimeSlot('09:00', '10:00', is_booked=True, appointment_id=7),),
            id=21,
        ),
    ]

    matches = search(SearchCriteria(date=MONDAY), DOCTORS, records, today=MONDAY)

    assert ids(matches) == [4, 3]


def test_free_slots_exclude_booked_ones() -> None:
    records = [
        SingleAvailability(
            1,
            MONDAY,
            (TimeSlot('09:00', '10:00', is_booked=True, appointment_id=7), TimeSlot('10:00', '11:00')),
            id=20,
        ),
    ]

    [match] = search(SearchCriteria(date=MONDAY), DOCTORS, records, today=MONDAY)

    assert match.source is AvailabilitySource.FROM_SINGLE_OVERRIDE
    assert match.free_slots == (TimeSlot('10:00', '11:00'),)


def test_time_narrows_results_to_slots_containing_it() -> None:
    matches = search(SearchCriteria(date=MONDAY, time=time(13, 30)), DOCTORS, RECORDS, today=MONDAY)

    assert ids(matches) == [3]
    assert matches[0].free_slots == (TimeSlot('13:00', '14:00'),)


@pytest.mark.parametrize(
    ('display_name', 'prefix', 'expected'),
    [
        ('Alice Brown', 'ali', True),
        ('Alice Brown', 'BRO', True),
        ('Alice Brown', 'alice b', True),
        ('Alice Brown', 'rown', False),
    ],
)
def test_matches_name(display_name: str, prefix: str, expected: bool) -> None:
    assert matches_name(display_name, prefix) is expected
