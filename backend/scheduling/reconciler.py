"""Booking and release of appointment ranges inside availability records.

A booking always lands in the single-date record of its date. When the date
only had the weekly pattern, the resolved pattern is copied into a new
single-date record first, so the booked state belongs to that date and never
to the pattern.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date

from backend.scheduling.domain import (
    AvailabilityRecord,
    AvailabilitySource,
    SingleAvailability,
    TimeRange,
    TimeSlot,
)
from backend.scheduling.errors import BookingNotFound, DuplicateBooking, SlotConflict
from backend.scheduling.resolver import resolve_date
from backend.scheduling.slots import DEFAULT_GRANULARITY_MINUTES, merge_adjacent_free, sort_slots

logger = logging.getLogger(__name__)


def single_record_for(records: Iterable[AvailabilityRecord], doctor_id: int, day: date) -> SingleAvailability | None:
    for record in records:
        if (
            isinstance(record, SingleAvailability)
            and record.is_active
            and record.doctor_id == doctor_id
            and record.date == day
        ):
            return record
    return None


def split_slot(slot: TimeSlot, booking_range: TimeRange, appointment_id: int) -> list[TimeSlot]:
    pieces: list[TimeSlot] = []

    if booking_range.start > slot.start_time:
        pieces.append(TimeSlot(slot.start_time, booking_range.start))

    pieces.append(TimeSlot(booking_range.start, booking_range.end, is_booked=True, appointment_id=appointment_id))

    if booking_range.end < slot.end_time:
        pieces.append(TimeSlot(booking_range.end, slot.end_time))

    return pieces


def _replace_single(
    records: Sequence[AvailabilityRecord],
    current: SingleAvailability | None,
    updated: SingleAvailability,
) -> list[AvailabilityRecord]:
    if current is None:
        return [*records, updated]
    return [updated if record is current else record for record in records]


def apply_booking(
    records: Sequence[AvailabilityRecord],
    doctor_id: int,
    day: date,
    booking_range: TimeRange,
    appointment_id: int,
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> list[AvailabilityRecord]:
    """Book ``booking_range`` on ``day`` and return the updated record list.

    The range has to sit inside one free effective slot; whatever is left of
    that slot on either side stays free.
    """
    records = list(records)
    resolved = resolve_date(doctor_id, day, records, granularity_minutes)

    if resolved is None or resolved.source is AvailabilitySource.BLOCKED:
        raise SlotConflict(f'Doctor {doctor_id} is not available on {day.isoformat()}.')

    slots = list(resolved.effective_slots)
    containing = next((slot for slot in slots if slot.time_range.contains(booking_range)), None)

    if containing is None:
        raise SlotConflict(f'{booking_range} on {day.isoformat()} does not fit inside an available slot.')

    if containing.is_booked:
        if containing.time_range == booking_range and containing.appointment_id == appointment_id:
            raise DuplicateBooking(
                f'Appointment {appointment_id} already holds {booking_range} on {day.isoformat()}.',
                appointment_id=appointment_id,
            )
        raise SlotConflict(f'{booking_range} on {day.isoformat()} is already booked.')

    position = slots.index(containing)
    slots[position:position + 1] = split_slot(containing, booking_range, appointment_id)

    current = single_record_for(records, doctor_id, day)
    updated = SingleAvailability(
        doctor_id=doctor_id,
        date=day,
        time_slots=tuple(slots),
        id=current.id if current is not None else None,
    )

    logger.debug(
        'Booked %s on %s for doctor %s (appointment %s, source %s)',
        booking_range,
        day.isoformat(),
        doctor_id,
        appointment_id,
        resolved.source.value,
    )
    return _replace_single(records, current, updated)


def release_booking(
    records: Sequence[AvailabilityRecord],
    doctor_id: int,
    day: date,
    booking_range: TimeRange,
    appointment_id: int | None = None,
) -> list[AvailabilityRecord]:
    """Free a booked range and merge it with the free slots it touches."""
    records = list(records)
    current = single_record_for(records, doctor_id, day)
    if current is None:
        raise BookingNotFound(f'Doctor {doctor_id} has no bookings on {day.isoformat()}.')

    slots = sort_slots(current.time_slots)
    target = next(
        (
            slot
            for slot in slots
            if slot.is_booked
            and slot.time_range == booking_range
            and (appointment_id is None or slot.appointment_id == appointment_id)
        ),
        None,
    )
    if target is None:
        raise BookingNotFound(f'No booking for {booking_range} on {day.isoformat()}.')

    freed = TimeSlot(target.start_time, target.end_time)
    slots[slots.index(target)] = freed

    updated = SingleAvailability(
        doctor_id=doctor_id,
        date=day,
        time_slots=tuple(merge_adjacent_free(slots, freed)),
        id=current.id,
    )
    return _replace_single(records, current, updated)
