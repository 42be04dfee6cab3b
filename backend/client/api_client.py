"""HTTP client for the availability API.

The caller passes an explicit ``ApiSession`` instead of the client reading a
token from ambient storage. Booking and cancellation retry exactly once, and
only after a timeout; the server treats a repeated identical booking as a
no-op, so the retry cannot create a second appointment. Schedule writes are
never retried. Reads retry on transport errors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date

import httpx
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.scheduling import errors
from backend.scheduling.domain import (
    AvailabilityKind,
    AvailabilityRecord,
    AvailabilitySource,
    DayOfWeek,
    DoctorSummary,
    RecurringAvailability,
    ResolvedDayAvailability,
    SearchCriteria,
    SearchMatch,
    SingleAvailability,
    TimeRange,
    TimeSlot,
    format_clock,
)
from backend.scheduling.resolver import records_for_month, resolve_month
from backend.scheduling.slots import DEFAULT_GRANULARITY_MINUTES

logger = logging.getLogger(__name__)

_ERRORS_BY_NAME: dict[str, type[errors.SchedulingError]] = {
    error.__name__: error
    for error in (
        errors.ScheduleValidationError,
        errors.SlotConflict,
        errors.StaleAvailability,
        errors.BookedSlotLocked,
        errors.DuplicateBooking,
        errors.BookingNotFound,
        errors.EmptyQuery,
    )
}

retry_once_on_timeout = retry(
    retry=retry_if_exception_type(httpx.TimeoutException),
    stop=stop_after_attempt(2),
    reraise=True,
    before_sleep=before_sleep_log(logger, logging.WARNING),
)

retry_reads = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, max=1),
    reraise=True,
    before_sleep=before_sleep_log(logger, logging.WARNING),
)


@dataclass(frozen=True)
class ApiSession:
    base_url: str
    token: str | None = None
    timeout_seconds: float = 10.0

    def headers(self) -> dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers


def slot_from_payload(data: Mapping) -> TimeSlot:
    return TimeSlot.from_dict(dict(data))


def record_from_payload(data: Mapping) -> AvailabilityRecord:
    slots = tuple(slot_from_payload(item) for item in data.get('timeSlots') or [])
    kind = data.get('type')

    if kind == AvailabilityKind.RECURRING.value:
        return RecurringAvailability(
            doctor_id=data['doctorId'],
            day_of_week=DayOfWeek.parse(data['dayOfWeek']),
            time_slots=slots,
            id=data.get('id'),
            is_active=data.get('isActive', True),
        )
    if kind == AvailabilityKind.SINGLE.value:
        return SingleAvailability(
            doctor_id=data['doctorId'],
            date=date.fromisoformat(str(data['date'])[:10]),
            time_slots=slots,
            id=data.get('id'),
            is_active=data.get('isActive', True),
        )
    raise errors.ScheduleValidationError(f'Unknown availability type {kind!r}.')


def error_from_response(response: httpx.Response) -> errors.SchedulingError | None:
    try:
        detail = response.json().get('detail')
    except ValueError:
        return None

    if not isinstance(detail, dict):
        return None

    error_type = _ERRORS_BY_NAME.get(detail.get('error', ''))
    if error_type is None:
        return None
    return error_type(detail.get('message', ''))


class AvailabilityClient:
    def __init__(self, session: ApiSession, transport: httpx.BaseTransport | None = None) -> None:
        self.session = session
        self._client = httpx.Client(
            base_url=session.base_url,
            headers=session.headers(),
            timeout=session.timeout_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AvailabilityClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = self._client.request(method, path, **kwargs)
        if response.is_error:
            scheduling_error = error_from_response(response)
            if scheduling_error is not None:
                raise scheduling_error
            response.raise_for_status()
        return response

    @retry_reads
    def get_doctor_availabilities(self, doctor_id: int) -> list[AvailabilityRecord]:
        payload = self._request('GET', f'/availability/doctor/{doctor_id}/all').json()
        return [record_from_payload(item) for item in payload.get('availabilities', [])]

    def resolve_month(
        self,
        doctor_id: int,
        month_anchor: date,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
    ) -> dict[date, ResolvedDayAvailability]:
        """Month view computed locally from the doctor's records.

        Advisory only: the server re-checks every booking.
        """
        recurring, single = records_for_month(self.get_doctor_availabilities(doctor_id), month_anchor)
        return resolve_month(doctor_id, month_anchor, recurring, single, granularity_minutes)

    @retry_reads
    def search(self, criteria: SearchCriteria) -> list[SearchMatch]:
        params: dict[str, str] = {}
        if criteria.date is not None:
            params['date'] = criteria.date.isoformat()
        if criteria.name_prefix:
            params['name'] = criteria.name_prefix
        if criteria.time is not None:
            params['time'] = format_clock(criteria.time)
        if 'date' not in params and 'name' not in params:
            raise errors.EmptyQuery('Provide a date or a doctor name to search.')

        payload = self._request('GET', '/availability/search', params=params).json()
        matched_date = date.fromisoformat(payload['date'])

        return [
            SearchMatch(
                doctor=DoctorSummary(
                    id=item['doctor']['id'],
                    display_name=item['doctor']['name'],
                    speciality=item['doctor'].get('speciality'),
                ),
                matched_date=matched_date,
                free_slots=tuple(slot_from_payload(slot) for slot in item.get('timeSlots', [])),
                source=AvailabilitySource(item['source']),
            )
            for item in payload.get('doctors', [])
        ]

    def set_recurring(
        self,
        doctor_id: int,
        weekly_schedule: Mapping[DayOfWeek | str, Sequence[TimeSlot]],
    ) -> list[AvailabilityRecord]:
        body = {
            'weeklySchedule': [
                {
                    'dayOfWeek': DayOfWeek.parse(day_of_week).value,
                    'timeSlots': [slot.to_dict() for slot in slots],
                }
                for day_of_week, slots in weekly_schedule.items()
            ]
        }
        payload = self._request('POST', f'/availability/doctor/{doctor_id}/recurring', json=body).json()
        return [record_from_payload(item) for item in payload.get('availabilities', [])]

    def set_for_date(self, doctor_id: int, day: date, time_slots: Sequence[TimeSlot]) -> AvailabilityRecord:
        body = {'date': day.isoformat(), 'timeSlots': [slot.to_dict() for slot in time_slots]}
        payload = self._request('POST', f'/availability/doctor/{doctor_id}/date', json=body).json()
        return record_from_payload(payload['availability'])

    def block_date(self, doctor_id: int, day: date) -> AvailabilityRecord:
        payload = self._request(
            'POST',
            f'/availability/doctor/{doctor_id}/remove-date',
            json={'date': day.isoformat()},
        ).json()
        return record_from_payload(payload['availability'])

    @retry_once_on_timeout
    def book(
        self,
        doctor_id: int,
        day: date,
        booking_range: TimeRange,
        summary: str | None = None,
        notes: str | None = None,
    ) -> dict:
        body = {
            'doctorId': doctor_id,
            'date': day.isoformat(),
            'startTime': format_clock(booking_range.start),
            'endTime': format_clock(booking_range.end),
            'summary': summary,
            'notes': notes,
        }
        return self._request('POST', '/appointments/book', json=body).json()

    @retry_once_on_timeout
    def cancel(self, appointment_id: int, reason: str | None = None) -> dict:
        return self._request('PUT', f'/appointments/{appointment_id}/cancel', json={'reason': reason}).json()
