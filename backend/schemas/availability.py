from datetime import date

from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel

from backend.scheduling.domain import (
    AvailabilityRecord,
    AvailabilitySource,
    DayOfWeek,
    RecurringAvailability,
    ResolvedDayAvailability,
    SearchMatch,
    SingleAvailability,
    TimeSlot,
    format_clock,
    parse_clock,
)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class TimeSlotPayload(CamelModel):
    start_time: str
    end_time: str
    is_booked: bool = False
    appointment_id: int | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock(cls, value: str) -> str:
        return format_clock(parse_clock(value))

    def to_slot(self) -> TimeSlot:
        return TimeSlot(self.start_time, self.end_time, self.is_booked, self.appointment_id)

    @classmethod
    def from_slot(cls, slot: TimeSlot) -> 'TimeSlotPayload':
        return cls(
            start_time=format_clock(slot.start_time),
            end_time=format_clock(slot.end_time),
            is_booked=slot.is_booked,
            appointment_id=slot.appointment_id,
        )


class AvailabilityResponse(CamelModel):
    id: int | None
    doctor_id: int
    type: str
    day_of_week: str | None
    date: date | None
    time_slots: list[TimeSlotPayload]
    is_active: bool

    @classmethod
    def from_record(cls, record: AvailabilityRecord) -> 'AvailabilityResponse':
        if isinstance(record, RecurringAvailability):
            day_of_week, record_date = record.day_of_week.value, None
        elif isinstance(record, SingleAvailability):
            day_of_week, record_date = None, record.date
        else:
            raise TypeError(f'Unknown availability record {record!r}')

        return cls(
            id=record.id,
            doctor_id=record.doctor_id,
            type=record.kind.value,
            day_of_week=day_of_week,
            date=record_date,
            time_slots=[TimeSlotPayload.from_slot(slot) for slot in record.time_slots],
            is_active=record.is_active,
        )


class AvailabilityListResponse(CamelModel):
    availabilities: list[AvailabilityResponse]


class WeeklyScheduleItem(CamelModel):
    day_of_week: str
    time_slots: list[TimeSlotPayload] = []

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: str) -> str:
        return DayOfWeek.parse(value).value


class SetRecurringRequest(CamelModel):
    weekly_schedule: list[WeeklyScheduleItem]


class SetRecurringResponse(CamelModel):
    message: str
    availabilities: list[AvailabilityResponse]


class SetDateRequest(CamelModel):
    date: date
    time_slots: list[TimeSlotPayload]


class RemoveDateRequest(CamelModel):
    date: date


class SetDateResponse(CamelModel):
    message: str
    date: date
    availability: AvailabilityResponse | None = None


class RemoveSlotResponse(CamelModel):
    message: str
    availability: AvailabilityResponse


class ResolvedDayResponse(CamelModel):
    date: date
    day_of_week: str
    available: bool
    type: str | None
    source: str | None
    time_slots: list[TimeSlotPayload]

    @classmethod
    def from_resolution(cls, day: date, resolved: ResolvedDayAvailability | None) -> 'ResolvedDayResponse':
        if resolved is None:
            return cls(
                date=day,
                day_of_week=DayOfWeek.from_date(day).value,
                available=False,
                type=None,
                source=None,
                time_slots=[],
            )

        return cls(
            date=resolved.date,
            day_of_week=resolved.day_of_week.value,
            available=resolved.is_available,
            type=_record_type_for(resolved),
            source=resolved.source.value,
            time_slots=[TimeSlotPayload.from_slot(slot) for slot in resolved.effective_slots],
        )


def _record_type_for(resolved: ResolvedDayAvailability) -> str:
    # blocks and overrides both come from single-date records
    if resolved.source is AvailabilitySource.FROM_RECURRING:
        return 'Recurring'
    return 'Single'


class MonthAvailabilityResponse(CamelModel):
    month: str
    days: list[ResolvedDayResponse]
    available_dates: list[date]


class RangeAvailabilityResponse(CamelModel):
    start_date: date
    end_date: date
    dates: list[ResolvedDayResponse]


class DoctorResponse(CamelModel):
    id: int
    name: str
    speciality: str | None = None


class AvailableDoctorResult(CamelModel):
    doctor: DoctorResponse
    availability_type: str
    source: str
    time_slots: list[TimeSlotPayload]

    @classmethod
    def from_match(cls, match: SearchMatch) -> 'AvailableDoctorResult':
        return cls(
            doctor=DoctorResponse(
                id=match.doctor.id,
                name=match.doctor.display_name,
                speciality=match.doctor.speciality,
            ),
            availability_type='Recurring' if match.source is AvailabilitySource.FROM_RECURRING else 'Single',
            source=match.source.value,
            time_slots=[TimeSlotPayload.from_slot(slot) for slot in match.free_slots],
        )


class SearchAvailabilityResponse(CamelModel):
    date: date | None
    day_of_week: str | None
    name_filter: str | None = None
    count: int
    doctors: list[AvailableDoctorResult]
