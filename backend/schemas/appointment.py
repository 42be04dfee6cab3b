from datetime import date
from typing import Literal

from pydantic import field_validator

from backend.core import config
from backend.models.appointment import Appointment
from backend.scheduling.domain import format_clock, parse_clock
from backend.schemas.availability import CamelModel

AppointmentStatus = Literal['Scheduled', 'In-Progress', 'Completed', 'Cancelled', 'No-Show']


def _normalize_text(value: str | None, limit: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > limit:
        raise ValueError(f'{label} must be {limit} characters or fewer.')

    return normalized


class BookAppointmentRequest(CamelModel):
    doctor_id: int
    date: date
    start_time: str
    end_time: str
    summary: str | None = None
    notes: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock(cls, value: str) -> str:
        return format_clock(parse_clock(value))

    @field_validator('summary')
    @classmethod
    def validate_summary(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Summary')

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Notes')


class CancelAppointmentRequest(CamelModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Reason')


class UpdateStatusRequest(CamelModel):
    status: AppointmentStatus
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_text(value, config.MAX_APPOINTMENT_NOTES_LENGTH, 'Reason')


class AppointmentResponse(CamelModel):
    id: int
    doctor_id: int
    patient_id: int
    date: date
    start_time: str
    end_time: str
    status: str
    summary: str | None = None
    notes: str | None = None
    cancel_reason: str | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'AppointmentResponse':
        return cls(
            id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            date=appointment.date,
            start_time=format_clock(appointment.start_time),
            end_time=format_clock(appointment.end_time),
            status=appointment.status or 'Scheduled',
            summary=appointment.summary,
            notes=appointment.notes,
            cancel_reason=appointment.cancel_reason,
        )
