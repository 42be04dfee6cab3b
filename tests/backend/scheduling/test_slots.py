from datetime import time

import pytest

from backend.scheduling.domain import TimeSlot, parse_clock
from backend.scheduling.errors import ScheduleValidationError
from backend.scheduling.slots import ensure_no_overlap, expand_slots, generate_slots, merge_adjacent_free


def ranges(slots: list[TimeSlot]) -> list[tuple[str, str]]:
    return [(slot.start_time.strftime('%H:%M'), slot.end_time.strftime('%H:%M')) for slot in slots]


def test_generate_slots_tiles_range_into_hours() -> None:
    slots = generate_slots(TimeSlot('09:00', '12:00'))

    assert ranges(slots) == [('09:00', '10:00'), ('10:00', '11:00'), ('11:00', '12:00')]
    assert not any(slot.is_booked for slot in slots)


def test_generate_slots_keeps_short_remainder_as_last_slot() -> None:
    slots = generate_slots(TimeSlot('09:00', '10:30'))

    assert ranges(slots) == [('09:00', '10:00'), ('10:00', '10:30')]


@pytest.mark.parametrize(('start', 'end'), [('09:00', '09:30'), ('09:00', '10:00')])
def test_generate_slots_returns_short_range_unchanged(start: str, end: str) -> None:
    source = TimeSlot(start, end)

    assert generate_slots(source) == [source]


def test_generate_slots_copies_booking_onto_every_slot() -> None:
    slots = generate_slots(TimeSlot('09:00', '11:00', is_booked=True, appointment_id=7))

    assert ranges(slots) == [('09:00', '10:00'), ('10:00', '11:00')]
    assert all(slot.is_booked and slot.appointment_id == 7 for slot in slots)


@pytest.mark.parametrize(
    ('start', 'end', 'granularity'),
    [
        ('08:00', '17:00', 60),
        ('08:15', '12:40', 30),
        ('13:00', '13:50', 15),
        ('00:00', '23:59', 45),
    ],
)
def test_generate_slots_covers_source_without_gaps(start: str, end: str, granularity: int) -> None:
    slots = generate_slots(TimeSlot(start, end), granularity)

    assert slots[0].start_time == parse_clock(start)
    assert slots[-1].end_time == parse_clock(end)
    for previous, current in zip(slots, slots[1:]):
        assert previous.end_time == current.start_time
    assert all(slot.time_range.minutes <= granularity for slot in slots)


@pytest.mark.parametrize('granularity', [0, -15])
def test_generate_slots_rejects_non_positive_granularity(granularity: int) -> None:
    with pytest.raises(ScheduleValidationError):
        generate_slots(TimeSlot('09:00', '10:00'), granularity)


def test_expand_slots_orders_input_before_tiling() -> None:
    slots = expand_slots([TimeSlot('14:00', '16:00'), TimeSlot('09:00', '10:00')])

    assert ranges(slots) == [('09:00', '10:00'), ('14:00', '15:00'), ('15:00', '16:00')]


@pytest.mark.parametrize('value', ['9:00', '24:00', '12:60', 'noon', ''])
def test_parse_clock_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ScheduleValidationError):
        parse_clock(value)


def test_parse_clock_drops_seconds_from_time_values() -> None:
    assert parse_clock(time(9, 30, 15)) == time(9, 30)


@pytest.mark.parametrize(('start', 'end'), [('10:00', '10:00'), ('11:00', '10:00')])
def test_time_slot_must_start_before_it_ends(start: str, end: str) -> None:
    with pytest.raises(ScheduleValidationError):
        TimeSlot(start, end)


def test_time_slot_rejects_appointment_on_free_slot() -> None:
    with pytest.raises(ScheduleValidationError):
        TimeSlot('09:00', '10:00', appointment_id=3)


def test_ensure_no_overlap_rejects_overlapping_slots() -> None:
    with pytest.raises(ScheduleValidationError):
        ensure_no_overlap([TimeSlot('09:00', '10:30'), TimeSlot('10:00', '11:00')])


def test_ensure_no_overlap_allows_touching_slots() -> None:
    ordered = ensure_no_overlap([TimeSlot('10:00', '11:00'), TimeSlot('09:00', '10:00')])

    assert ranges(ordered) == [('09:00', '10:00'), ('10:00', '11:00')]


def test_merge_adjacent_free_joins_only_the_touching_run() -> None:
    anchor = TimeSlot('10:00', '11:00')
    slots = [TimeSlot('09:00', '10:00'), anchor, TimeSlot('11:00', '12:00'), TimeSlot('13:00', '14:00')]

    assert ranges(merge_adjacent_free(slots, anchor)) == [('09:00', '12:00'), ('13:00', '14:00')]


def test_merge_adjacent_free_stops_at_booked_neighbours() -> None:
    anchor = TimeSlot('10:00', '11:00')
    booked = TimeSlot('09:00', '10:00', is_booked=True, appointment_id=1)
    slots = [booked, anchor, TimeSlot('11:00', '12:00')]

    merged = merge_adjacent_free(slots, anchor)

    assert merged[0] == booked
    assert ranges(merged) == [('09:00', '10:00'), ('10:00', '12:00')]


def test_expand_slots_keeps_booked_slots_whole() -> None:
    booked = TimeSlot('09:00', '11:00', is_booked=True, appointment_id=42)

    slots = expand_slots([booked, TimeSlot('11:00', '13:00')], 60)

    assert slots[0] == booked
    assert ranges(slots) == [('09:00', '11:00'), ('11:00', '12:00'), ('12:00', '13:00')]
