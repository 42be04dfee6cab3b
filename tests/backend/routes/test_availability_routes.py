from datetime import date

import pytest
from fastapi import HTTPException

from backend.routes.availability_routes import (
    get_date_availability,
    get_month_availability,
    get_range_availability,
    list_doctor_availabilities,
    parse_month,
    remove_date_availability,
    remove_time_slot,
    search_availability,
    set_date_availability,
    set_recurring_availability,
)
from backend.schemas.availability import (
    RemoveDateRequest,
    SetDateRequest,
    SetRecurringRequest,
    TimeSlotPayload,
    WeeklyScheduleItem,
)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch) -> None:
    monkeypatch.setattr('backend.routes.availability_routes.ensure_database_ready', lambda: None)


def weekly_request(day_of_week: str, start: str, end: str) -> SetRecurringRequest:
    return SetRecurringRequest(
        weekly_schedule=[
            WeeklyScheduleItem(day_of_week=day_of_week, time_slots=[TimeSlotPayload(start_time=start, end_time=end)])
        ]
    )


def slot_ranges(day) -> list[tuple[str, str]]:
    return [(slot.start_time, slot.end_time) for slot in day.time_slots]


def test_recurring_schedule_drives_month_view(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')

    response = set_recurring_availability(
        doctor_id=doctor.id,
        data=weekly_request('tuesday', '13:00', '15:00'),
        current_user=doctor_user,
        db=db_session,
    )

    assert [item.day_of_week for item in response.availabilities] == ['Tuesday']

    month = get_month_availability(doctor_id=doctor.id, month='2024-06', db=db_session)

    assert month.month == '2024-06'
    assert [day.date for day in month.days] == [date(2024, 6, 4), date(2024, 6, 11), date(2024, 6, 18), date(2024, 6, 25)]
    tuesday = month.days[1]
    assert tuesday.source == 'FromRecurring'
    assert tuesday.type == 'Recurring'
    assert slot_ranges(tuesday) == [('13:00', '14:00'), ('14:00', '15:00')]
    assert month.available_dates == [day.date for day in month.days]


def test_recurring_request_accepts_camel_case_payload(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')
    data = SetRecurringRequest.model_validate(
        {'weeklySchedule': [{'dayOfWeek': 'Monday', 'timeSlots': [{'startTime': '09:00', 'endTime': '10:00'}]}]}
    )

    set_recurring_availability(doctor_id=doctor.id, data=data, current_user=doctor_user, db=db_session)

    listed = list_doctor_availabilities(doctor_id=doctor.id, db=db_session)
    payload = listed.availabilities[0].model_dump(by_alias=True)
    assert payload['type'] == 'Recurring'
    assert payload['dayOfWeek'] == 'Monday'
    assert payload['timeSlots'] == [{'startTime': '09:00', 'endTime': '10:00', 'isBooked': False, 'appointmentId': None}]


def test_only_the_doctor_can_change_the_schedule(db_session, create_doctor, create_user) -> None:
    doctor, _ = create_doctor('Gregory', 'House')
    patient = create_user('patient@example.com')

    with pytest.raises(HTTPException) as exception_info:
        set_recurring_availability(
            doctor_id=doctor.id,
            data=weekly_request('Monday', '09:00', '10:00'),
            current_user=patient,
            db=db_session,
        )

    assert exception_info.value.status_code == 403


def test_date_override_then_block(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')
    set_recurring_availability(
        doctor_id=doctor.id,
        data=weekly_request('Monday', '09:00', '17:00'),
        current_user=doctor_user,
        db=db_session,
    )

    saved = set_date_availability(
        doctor_id=doctor.id,
        data=SetDateRequest(date=date(2024, 6, 10), time_slots=[TimeSlotPayload(start_time='13:00', end_time='15:00')]),
        current_user=doctor_user,
        db=db_session,
    )
    assert saved.availability.type == 'Single'

    override = get_date_availability(doctor_id=doctor.id, requested_date=date(2024, 6, 10), db=db_session)
    assert override.source == 'FromSingleOverride'
    assert slot_ranges(override) == [('13:00', '14:00'), ('14:00', '15:00')]

    blocked = remove_date_availability(
        doctor_id=doctor.id,
        data=RemoveDateRequest(date=date(2024, 6, 10)),
        current_user=doctor_user,
        db=db_session,
    )
    assert blocked.message == 'Date blocked.'
    assert blocked.availability.id == saved.availability.id

    month = get_month_availability(doctor_id=doctor.id, month='2024-06', db=db_session)
    by_date = {day.date: day for day in month.days}
    assert by_date[date(2024, 6, 10)].source == 'Blocked'
    assert by_date[date(2024, 6, 10)].available is False
    assert date(2024, 6, 10) not in month.available_dates
    assert by_date[date(2024, 6, 17)].source == 'FromRecurring'


def test_overlapping_date_slots_are_rejected(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')

    with pytest.raises(HTTPException) as exception_info:
        set_date_availability(
            doctor_id=doctor.id,
            data=SetDateRequest(
                date=date(2024, 6, 10),
                time_slots=[
                    TimeSlotPayload(start_time='09:00', end_time='11:00'),
                    TimeSlotPayload(start_time='10:00', end_time='12:00'),
                ],
            ),
            current_user=doctor_user,
            db=db_session,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['error'] == 'ScheduleValidationError'


def test_date_without_availability_is_reported_unavailable(db_session, create_doctor) -> None:
    doctor, _ = create_doctor('Gregory', 'House')

    response = get_date_availability(doctor_id=doctor.id, requested_date=date(2024, 6, 9), db=db_session)

    assert response.available is False
    assert response.source is None
    assert response.day_of_week == 'Sunday'
    assert response.time_slots == []


def test_range_lists_every_date(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')
    set_recurring_availability(
        doctor_id=doctor.id,
        data=weekly_request('Monday', '09:00', '10:00'),
        current_user=doctor_user,
        db=db_session,
    )

    response = get_range_availability(
        doctor_id=doctor.id,
        start_date=date(2024, 6, 28),
        end_date=date(2024, 7, 2),
        db=db_session,
    )

    assert len(response.dates) == 5
    assert [day.date for day in response.dates if day.available] == [date(2024, 7, 1)]


@pytest.mark.parametrize(
    ('start_date', 'end_date'),
    [
        (date(2024, 6, 10), date(2024, 6, 9)),
        (date(2024, 1, 1), date(2024, 3, 31)),
    ],
)
def test_range_rejects_reversed_or_long_ranges(db_session, start_date: date, end_date: date) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_range_availability(doctor_id=1, start_date=start_date, end_date=end_date, db=db_session)

    assert exception_info.value.status_code == 400


def test_unknown_doctor_returns_404(db_session) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_month_availability(doctor_id=999, month='2024-06', db=db_session)

    assert exception_info.value.status_code == 404


@pytest.mark.parametrize('month', ['2024/06', '2024-13', 'June'])
def test_parse_month_rejects_bad_format(month: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        parse_month(month)

    assert exception_info.value.status_code == 400


def test_parse_month_defaults_to_current_month() -> None:
    assert parse_month(None) == date.today().replace(day=1)


def test_remove_time_slot_drops_free_slot(db_session, create_doctor) -> None:
    doctor, doctor_user = create_doctor('Gregory', 'House')
    saved = set_date_availability(
        doctor_id=doctor.id,
        data=SetDateRequest(
            date=date(2024, 6, 10),
            time_slots=[
                TimeSlotPayload(start_time='09:00', end_time='10:00'),
                TimeSlotPayload(start_time='11:00', end_time='12:00'),
            ],
        ),
        current_user=doctor_user,
        db=db_session,
    )

    response = remove_time_slot(
        availability_id=saved.availability.id,
        slot_index=0,
        current_user=doctor_user,
        db=db_session,
    )

    assert [(slot.start_time, slot.end_time) for slot in response.availability.time_slots] == [('11:00', '12:00')]


def test_search_by_date_and_name(db_session, create_doctor) -> None:
    house, house_user = create_doctor('Gregory', 'House')
    grey, grey_user = create_doctor('Meredith', 'Grey')
    for doctor, user in ((house, house_user), (grey, grey_user)):
        set_recurring_availability(
            doctor_id=doctor.id,
            data=weekly_request('Monday', '09:00', '11:00'),
            current_user=user,
            db=db_session,
        )

    by_date = search_availability(search_date=date(2024, 6, 10), name=None, search_time=None, db=db_session)
    assert by_date.count == 2
    assert [item.doctor.name for item in by_date.doctors] == ['Gregory House', 'Meredith Grey']

    by_name = search_availability(search_date=date(2024, 6, 10), name='gre', search_time=None, db=db_session)
    assert [item.doctor.name for item in by_name.doctors] == ['Gregory House', 'Meredith Grey']

    by_last_name = search_availability(search_date=date(2024, 6, 10), name='grey', search_time='10:15', db=db_session)
    assert [item.doctor.name for item in by_last_name.doctors] == ['Meredith Grey']
    assert [(slot.start_time, slot.end_time) for slot in by_last_name.doctors[0].time_slots] == [('10:00', '11:00')]


def test_search_without_date_or_name_is_rejected(db_session) -> None:
    with pytest.raises(HTTPException) as exception_info:
        search_availability(search_date=None, name='  ', search_time=None, db=db_session)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail['error'] == 'EmptyQuery'
