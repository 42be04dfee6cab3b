import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_schedule_owner
from backend.core import config
from backend.models.availability import Availability
from backend.models.user import User
from backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_doctor_or_404,
    scheduling_http_error,
)
from backend.scheduling.domain import SearchCriteria, SingleAvailability, parse_clock
from backend.scheduling.editing import block_date, build_weekly_schedule, edit_date, remove_slot
from backend.scheduling.errors import SchedulingError
from backend.scheduling.reconciler import single_record_for
from backend.scheduling.resolver import available_dates, records_for_month, resolve_date, resolve_month, resolve_range
from backend.scheduling.search import search
from backend.schemas.availability import (
    AvailabilityListResponse,
    AvailabilityResponse,
    AvailableDoctorResult,
    MonthAvailabilityResponse,
    RangeAvailabilityResponse,
    RemoveDateRequest,
    RemoveSlotResponse,
    ResolvedDayResponse,
    SearchAvailabilityResponse,
    SetDateRequest,
    SetDateResponse,
    SetRecurringRequest,
    SetRecurringResponse,
)
from backend.services.availability_store import (
    RecordSnapshot,
    load_doctor_snapshot,
    load_doctor_summaries,
    load_records_for_date,
    save_record,
    save_single,
    save_weekly_schedule,
)

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)


def parse_month(month: str | None) -> date:
    if month is None:
        return date.today().replace(day=1)

    try:
        return datetime.strptime(month.strip(), '%Y-%m').date()
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Month must use the YYYY-MM format.',
        ) from exc


@router.get('/doctor/{doctor_id}/all', response_model=AvailabilityListResponse)
def list_doctor_availabilities(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_doctor_or_404(db, doctor_id)
        snapshot = load_doctor_snapshot(db, doctor_id)

        return AvailabilityListResponse(
            availabilities=[AvailabilityResponse.from_record(record) for record in snapshot.records]
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/doctor/{doctor_id}/recurring', response_model=SetRecurringResponse)
def set_recurring_availability(
    doctor_id: int,
    data: SetRecurringRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(db, doctor_id)
        require_schedule_owner(doctor, current_user)

        schedule = build_weekly_schedule(
            doctor_id,
            [(item.day_of_week, [slot.to_slot() for slot in item.time_slots]) for item in data.weekly_schedule],
        )
        saved = save_weekly_schedule(db, doctor_id, schedule, current_user.id)
        db.commit()

        logger.info('Doctor %s replaced weekly schedule (%d active days)', doctor_id, len(saved))
        return SetRecurringResponse(
            message='Recurring availability saved.',
            availabilities=[AvailabilityResponse.from_record(record) for record in saved],
        )
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Saving weekly schedule for doctor %s failed', doctor_id)
        raise database_unavailable() from exc


def _write_date(
    db: Session,
    doctor_id: int,
    current_user: User,
    snapshot: RecordSnapshot,
    record_date: date,
    build: Callable[[SingleAvailability | None], SingleAvailability],
) -> SetDateResponse:
    existing = single_record_for(snapshot.records, doctor_id, record_date)
    updated = build(existing)
    saved = save_single(db, updated, snapshot, current_user.id)
    db.commit()

    message = 'Date blocked.' if not saved.time_slots else 'Availability saved for date.'
    logger.info('Doctor %s updated %s (%d slots)', doctor_id, record_date.isoformat(), len(saved.time_slots))
    return SetDateResponse(
        message=message,
        date=record_date,
        availability=AvailabilityResponse.from_record(saved),
    )


@router.post('/doctor/{doctor_id}/date', response_model=SetDateResponse)
def set_date_availability(
    doctor_id: int,
    data: SetDateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(db, doctor_id)
        require_schedule_owner(doctor, current_user)

        proposed = [slot.to_slot() for slot in data.time_slots]
        snapshot = load_doctor_snapshot(db, doctor_id)

        return _write_date(
            db,
            doctor_id,
            current_user,
            snapshot,
            data.date,
            lambda existing: edit_date(existing, doctor_id, data.date, proposed),
        )
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Saving %s for doctor %s failed', data.date, doctor_id)
        raise database_unavailable() from exc


@router.post('/doctor/{doctor_id}/remove-date', response_model=SetDateResponse)
def remove_date_availability(
    doctor_id: int,
    data: RemoveDateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(db, doctor_id)
        require_schedule_owner(doctor, current_user)
        snapshot = load_doctor_snapshot(db, doctor_id)

        return _write_date(
            db,
            doctor_id,
            current_user,
            snapshot,
            data.date,
            lambda existing: block_date(existing, doctor_id, data.date),
        )
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Blocking %s for doctor %s failed', data.date, doctor_id)
        raise database_unavailable() from exc


@router.delete('/{availability_id}/slot/{slot_index}', response_model=RemoveSlotResponse)
def remove_time_slot(
    availability_id: int,
    slot_index: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        row = db.query(Availability).filter(
            Availability.id == availability_id,
            Availability.is_active.is_(True),
        ).first()
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        doctor = get_doctor_or_404(db, row.doctor_id)
        require_schedule_owner(doctor, current_user)

        snapshot = RecordSnapshot([row])
        updated = remove_slot(snapshot.records[0], slot_index)
        saved = save_record(db, updated, snapshot, current_user.id)
        db.commit()

        return RemoveSlotResponse(
            message='Time slot removed.',
            availability=AvailabilityResponse.from_record(saved),
        )
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}/month', response_model=MonthAvailabilityResponse)
def get_month_availability(
    doctor_id: int,
    month: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    month_anchor = parse_month(month)
    ensure_database_ready()

    try:
        get_doctor_or_404(db, doctor_id)
        snapshot = load_doctor_snapshot(db, doctor_id)
        recurring, single = records_for_month(snapshot.records, month_anchor)
        resolution = resolve_month(doctor_id, month_anchor, recurring, single, config.SLOT_GRANULARITY_MINUTES)

        return MonthAvailabilityResponse(
            month=month_anchor.strftime('%Y-%m'),
            days=[ResolvedDayResponse.from_resolution(day, resolution[day]) for day in sorted(resolution)],
            available_dates=available_dates(resolution),
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}/range', response_model=RangeAvailabilityResponse)
def get_range_availability(
    doctor_id: int,
    start_date: date = Query(alias='startDate'),
    end_date: date = Query(alias='endDate'),
    db: Session = Depends(get_db),
):
    if end_date < start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='endDate must be on or after startDate.',
        )
    if (end_date - start_date).days + 1 > config.MAX_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Date ranges are limited to {config.MAX_RANGE_DAYS} days.',
        )

    ensure_database_ready()

    try:
        get_doctor_or_404(db, doctor_id)
        snapshot = load_doctor_snapshot(db, doctor_id)
        resolution = resolve_range(doctor_id, start_date, end_date, snapshot.records, config.SLOT_GRANULARITY_MINUTES)

        dates: list[ResolvedDayResponse] = []
        current_day = start_date
        while current_day <= end_date:
            dates.append(ResolvedDayResponse.from_resolution(current_day, resolution.get(current_day)))
            current_day += timedelta(days=1)

        return RangeAvailabilityResponse(start_date=start_date, end_date=end_date, dates=dates)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}', response_model=ResolvedDayResponse)
def get_date_availability(
    doctor_id: int,
    requested_date: date = Query(alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        get_doctor_or_404(db, doctor_id)
        snapshot = load_doctor_snapshot(db, doctor_id)
        resolved = resolve_date(doctor_id, requested_date, snapshot.records, config.SLOT_GRANULARITY_MINUTES)

        return ResolvedDayResponse.from_resolution(requested_date, resolved)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/search', response_model=SearchAvailabilityResponse)
def search_availability(
    search_date: date | None = Query(default=None, alias='date'),
    name: str | None = Query(default=None),
    search_time: str | None = Query(default=None, alias='time'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        criteria = SearchCriteria(
            date=search_date,
            name_prefix=name,
            time=parse_clock(search_time) if search_time else None,
        )
        today = date.today()
        target_date = search_date or today

        matches = search(
            criteria,
            load_doctor_summaries(db),
            load_records_for_date(db, target_date),
            today=today,
            granularity_minutes=config.SLOT_GRANULARITY_MINUTES,
        )

        return SearchAvailabilityResponse(
            date=target_date,
            day_of_week=target_date.strftime('%A'),
            name_filter=name.strip() if name else None,
            count=len(matches),
            doctors=[AvailableDoctorResult.from_match(match) for match in matches],
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
