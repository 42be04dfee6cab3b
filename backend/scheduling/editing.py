"""Rules for schedule edits made by the doctor.

Booked slots are owned by bookings: an edit may repeat them but never drop,
move or invent one. A repeated booked slot keeps its appointment even when the
edit omits the appointment id.
"""

from collections.abc import Iterable, Sequence
from datetime import date

from backend.scheduling.domain import (
    AvailabilityRecord,
    DayOfWeek,
    RecurringAvailability,
    SingleAvailability,
    TimeSlot,
)
from backend.scheduling.errors import BookedSlotLocked, ScheduleValidationError
from backend.scheduling.slots import ensure_no_overlap


def edit_date(
    existing: SingleAvailability | None,
    doctor_id: int,
    day: date,
    proposed: Sequence[TimeSlot],
) -> SingleAvailability:
    """Full replacement of one date's slots; an empty list blocks the date."""
    existing_booked = {
        slot.time_range: slot for slot in (existing.time_slots if existing is not None else ()) if slot.is_booked
    }

    kept: list[TimeSlot] = []
    for slot in proposed:
        if not slot.is_booked:
            kept.append(slot)
            continue
        booked = existing_booked.pop(slot.time_range, None)
        if booked is None:
            raise BookedSlotLocked(f'{slot.time_range} can only be marked booked by an appointment.')
        kept.append(booked)

    if existing_booked:
        locked = ', '.join(str(time_range) for time_range in sorted(existing_booked, key=lambda r: r.start))
        raise BookedSlotLocked(f'Booked slots cannot be removed or changed: {locked}.')

    return SingleAvailability(
        doctor_id=doctor_id,
        date=day,
        time_slots=tuple(ensure_no_overlap(kept)),
        id=existing.id if existing is not None else None,
    )


def block_date(existing: SingleAvailability | None, doctor_id: int, day: date) -> SingleAvailability:
    return edit_date(existing, doctor_id, day, [])


def build_weekly_schedule(
    doctor_id: int,
    entries: Iterable[tuple[str | DayOfWeek, Sequence[TimeSlot]]],
) -> dict[DayOfWeek, RecurringAvailability]:
    """Weekly pattern for all seven days; days left out have no slots."""
    schedule: dict[DayOfWeek, tuple[TimeSlot, ...]] = {}

    for raw_day, slots in entries:
        day_of_week = DayOfWeek.parse(raw_day)
        if day_of_week in schedule:
            raise ScheduleValidationError(f'{day_of_week.value} appears more than once in the weekly schedule.')
        if any(slot.is_booked for slot in slots):
            raise BookedSlotLocked('Weekly schedules cannot contain booked slots.')
        schedule[day_of_week] = tuple(ensure_no_overlap(slots))

    return {
        day_of_week: RecurringAvailability(
            doctor_id=doctor_id,
            day_of_week=day_of_week,
            time_slots=schedule.get(day_of_week, ()),
        )
        for day_of_week in DayOfWeek
    }


def remove_slot(record: AvailabilityRecord, slot_index: int) -> AvailabilityRecord:
    if not 0 <= slot_index < len(record.time_slots):
        raise ScheduleValidationError(f'Slot index {slot_index} is out of range.')

    slot = record.time_slots[slot_index]
    if slot.is_booked:
        raise BookedSlotLocked(f'Booked slot {slot.time_range} cannot be removed.')

    remaining = record.time_slots[:slot_index] + record.time_slots[slot_index + 1:]

    if isinstance(record, RecurringAvailability):
        return RecurringAvailability(record.doctor_id, record.day_of_week, remaining, record.id, record.is_active)
    if isinstance(record, SingleAvailability):
        return SingleAvailability(record.doctor_id, record.date, remaining, record.id, record.is_active)
    raise ScheduleValidationError(f'Unknown availability record {record!r}.')
