"""Availability records and the values derived from them.

Records are a tagged union of ``RecurringAvailability`` (one weekday pattern)
and ``SingleAvailability`` (one calendar date). A single record without slots
blocks its date.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, time
from enum import Enum
from typing import ClassVar

from backend.scheduling.errors import ScheduleValidationError

_CLOCK_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)$')


def parse_clock(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)

    match = _CLOCK_PATTERN.match((value or '').strip())
    if match is None:
        raise ScheduleValidationError(f'Invalid time {value!r}; expected HH:MM (24-hour).')

    return time(int(match.group(1)), int(match.group(2)))


def format_clock(value: time) -> str:
    return value.strftime('%H:%M')


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(total_minutes: int) -> time:
    if not 0 <= total_minutes < 24 * 60:
        raise ScheduleValidationError(f'{total_minutes} minutes is outside a single day.')
    return time(total_minutes // 60, total_minutes % 60)


class DayOfWeek(str, Enum):
    MONDAY = 'Monday'
    TUESDAY = 'Tuesday'
    WEDNESDAY = 'Wednesday'
    THURSDAY = 'Thursday'
    FRIDAY = 'Friday'
    SATURDAY = 'Saturday'
    SUNDAY = 'Sunday'

    @classmethod
    def parse(cls, value: str | DayOfWeek) -> DayOfWeek:
        if isinstance(value, DayOfWeek):
            return value

        normalized = (value or '').strip().capitalize()
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ScheduleValidationError(f'Invalid day of week {value!r}.') from exc

    @classmethod
    def from_date(cls, value: date) -> DayOfWeek:
        # date.weekday(): Monday == 0, matching declaration order
        return list(cls)[value.weekday()]


class AvailabilityKind(str, Enum):
    RECURRING = 'Recurring'
    SINGLE = 'Single'


class AvailabilitySource(str, Enum):
    FROM_RECURRING = 'FromRecurring'
    FROM_SINGLE_OVERRIDE = 'FromSingleOverride'
    BLOCKED = 'Blocked'


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: time

    def __post_init__(self) -> None:
        object.__setattr__(self, 'start', parse_clock(self.start))
        object.__setattr__(self, 'end', parse_clock(self.end))
        if self.start >= self.end:
            raise ScheduleValidationError(
                f'Time range {format_clock(self.start)}-{format_clock(self.end)} must start before it ends.'
            )

    @property
    def minutes(self) -> int:
        return to_minutes(self.end) - to_minutes(self.start)

    def contains(self, other: TimeRange) -> bool:
        return self.start <= other.start and other.end <= self.end

    def overlaps(self, other: TimeRange) -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f'{format_clock(self.start)}-{format_clock(self.end)}'


@dataclass(frozen=True)
class TimeSlot:
    start_time: time
    end_time: time
    is_booked: bool = False
    appointment_id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, 'start_time', parse_clock(self.start_time))
        object.__setattr__(self, 'end_time', parse_clock(self.end_time))
        if self.start_time >= self.end_time:
            raise ScheduleValidationError(
                f'Time slot {format_clock(self.start_time)}-{format_clock(self.end_time)} '
                'must start before it ends.'
            )
        if self.appointment_id is not None and not self.is_booked:
            raise ScheduleValidationError('Only booked slots can reference an appointment.')

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)

    def with_range(self, start: time, end: time) -> TimeSlot:
        return TimeSlot(start, end, self.is_booked, self.appointment_id)

    def to_dict(self) -> dict:
        payload = {
            'startTime': format_clock(self.start_time),
            'endTime': format_clock(self.end_time),
            'isBooked': self.is_booked,
        }
        if self.appointment_id is not None:
            payload['appointmentId'] = self.appointment_id
        return payload

    @classmethod
    def from_dict(cls, data: dict) -> TimeSlot:
        try:
            return cls(
                start_time=data['startTime'],
                end_time=data['endTime'],
                is_booked=bool(data.get('isBooked', False)),
                appointment_id=data.get('appointmentId'),
            )
        except KeyError as exc:
            raise ScheduleValidationError(f'Time slot is missing {exc.args[0]!r}.') from exc


@dataclass(frozen=True)
class RecurringAvailability:
    doctor_id: int
    day_of_week: DayOfWeek
    time_slots: tuple[TimeSlot, ...] = ()
    id: int | None = None
    is_active: bool = True

    kind: ClassVar[AvailabilityKind] = AvailabilityKind.RECURRING

    def __post_init__(self) -> None:
        object.__setattr__(self, 'day_of_week', DayOfWeek.parse(self.day_of_week))
        object.__setattr__(self, 'time_slots', tuple(self.time_slots))


@dataclass(frozen=True)
class SingleAvailability:
    doctor_id: int
    date: date
    time_slots: tuple[TimeSlot, ...] = ()
    id: int | None = None
    is_active: bool = True

    kind: ClassVar[AvailabilityKind] = AvailabilityKind.SINGLE

    def __post_init__(self) -> None:
        if not isinstance(self.date, date):
            raise ScheduleValidationError(f'Invalid availability date {self.date!r}.')
        object.__setattr__(self, 'time_slots', tuple(self.time_slots))

    @property
    def is_block(self) -> bool:
        return not self.time_slots


AvailabilityRecord = RecurringAvailability | SingleAvailability


@dataclass(frozen=True)
class ResolvedDayAvailability:
    date: date
    day_of_week: DayOfWeek
    effective_slots: tuple[TimeSlot, ...]
    source: AvailabilitySource

    @property
    def free_slots(self) -> tuple[TimeSlot, ...]:
        return tuple(slot for slot in self.effective_slots if not slot.is_booked)

    @property
    def is_available(self) -> bool:
        return bool(self.free_slots)


@dataclass(frozen=True)
class DoctorSummary:
    id: int
    display_name: str
    speciality: str | None = None


@dataclass(frozen=True)
class SearchCriteria:
    date: date | None = None
    name_prefix: str | None = None
    time: time | None = None


@dataclass(frozen=True)
class SearchMatch:
    doctor: DoctorSummary
    matched_date: date
    free_slots: tuple[TimeSlot, ...]
    source: AvailabilitySource
