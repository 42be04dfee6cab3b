import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, is_admin
from backend.core import config
from backend.models.appointment import Appointment
from backend.models.doctor import Doctor
from backend.models.user import User
from backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_doctor_or_404,
    scheduling_http_error,
)
from backend.scheduling.domain import TimeRange
from backend.scheduling.errors import BookingNotFound, DuplicateBooking, SchedulingError
from backend.scheduling.reconciler import apply_booking, release_booking, single_record_for
from backend.schemas.appointment import (
    AppointmentResponse,
    BookAppointmentRequest,
    CancelAppointmentRequest,
    UpdateStatusRequest,
)
from backend.services.availability_store import load_doctor_snapshot, save_single

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

SCHEDULED_STATUS = 'Scheduled'
CANCELLED_STATUS = 'Cancelled'
NO_SHOW_STATUS = 'No-Show'


def find_matching_appointment(
    db: Session,
    doctor_id: int,
    patient_id: int,
    appointment_date: date,
    booking_range: TimeRange,
) -> Appointment | None:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.patient_id == patient_id,
        Appointment.date == appointment_date,
        Appointment.start_time == booking_range.start,
        Appointment.end_time == booking_range.end,
        Appointment.status == SCHEDULED_STATUS,
    ).first()


def ensure_can_manage(db: Session, appointment: Appointment, user: User) -> Doctor:
    doctor = get_doctor_or_404(db, appointment.doctor_id)
    if is_admin(user) or appointment.patient_id == user.id or doctor.user_id == user.id:
        return doctor

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the patient or doctor on this appointment can change it.',
    )


def release_appointment_slot(db: Session, appointment: Appointment, user: User) -> None:
    """Reopen the appointment's slot. Does not commit."""
    snapshot = load_doctor_snapshot(db, appointment.doctor_id)
    booking_range = TimeRange(appointment.start_time, appointment.end_time)

    try:
        updated = release_booking(
            snapshot.records,
            appointment.doctor_id,
            appointment.date,
            booking_range,
            appointment.id,
        )
    except BookingNotFound:
        logger.warning(
            'Appointment %s has no booked slot for %s on %s; nothing to release',
            appointment.id,
            booking_range,
            appointment.date.isoformat(),
        )
        return

    save_single(db, single_record_for(updated, appointment.doctor_id, appointment.date), snapshot, user.id)


@router.post('/book', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    response: Response,
    strict: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if (current_user.role or '').lower() != 'patient':
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only patients can book appointments.',
        )

    if data.date < date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointments must be scheduled in the future.',
        )

    ensure_database_ready()

    appointment = None
    try:
        booking_range = TimeRange(data.start_time, data.end_time)
        doctor = get_doctor_or_404(db, data.doctor_id)
        snapshot = load_doctor_snapshot(db, doctor.id)

        appointment = find_matching_appointment(db, doctor.id, current_user.id, data.date, booking_range)
        if appointment is None:
            appointment = Appointment(
                doctor_id=doctor.id,
                patient_id=current_user.id,
                date=data.date,
                start_time=booking_range.start,
                end_time=booking_range.end,
                status=SCHEDULED_STATUS,
                summary=data.summary,
                notes=data.notes,
            )
            db.add(appointment)
            db.flush()

        updated = apply_booking(
            snapshot.records,
            doctor.id,
            data.date,
            booking_range,
            appointment.id,
            config.SLOT_GRANULARITY_MINUTES,
        )
        save_single(db, single_record_for(updated, doctor.id, data.date), snapshot, current_user.id)
        db.commit()
        db.refresh(appointment)

        logger.info(
            'Booked appointment %s with doctor %s on %s %s',
            appointment.id,
            doctor.id,
            data.date.isoformat(),
            booking_range,
        )
        return AppointmentResponse.from_appointment(appointment)
    except DuplicateBooking as exc:
        db.rollback()
        if strict:
            raise scheduling_http_error(exc) from exc

        logger.info('Appointment %s was already booked; returning it unchanged', exc.appointment_id)
        response.status_code = status.HTTP_200_OK
        return AppointmentResponse.from_appointment(appointment)
    except SchedulingError as exc:
        db.rollback()
        logger.warning('Booking with doctor %s on %s rejected: %s', data.doctor_id, data.date, exc)
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking with doctor %s on %s failed', data.doctor_id, data.date)
        raise database_unavailable() from exc


def _cancel(db: Session, appointment: Appointment, current_user: User, reason: str | None) -> AppointmentResponse:
    if appointment.status == CANCELLED_STATUS:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Appointment is already cancelled.',
        )

    release_appointment_slot(db, appointment, current_user)
    appointment.status = CANCELLED_STATUS
    appointment.cancel_reason = reason
    db.commit()
    db.refresh(appointment)

    logger.info('Cancelled appointment %s', appointment.id)
    return AppointmentResponse.from_appointment(appointment)


def get_appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found.',
        )
    return appointment


@router.put('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_can_manage(db, appointment, current_user)

        return _cancel(db, appointment, current_user, data.reason if data is not None else None)
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Cancelling appointment %s failed', appointment_id)
        raise database_unavailable() from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateStatusRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        doctor = ensure_can_manage(db, appointment, current_user)

        if data.status == CANCELLED_STATUS:
            return _cancel(db, appointment, current_user, data.reason)

        if doctor.user_id != current_user.id and not is_admin(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the doctor can change the appointment status.',
            )
        if appointment.status == CANCELLED_STATUS:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Cancelled appointments cannot change status.',
            )

        # No-Show and Completed keep the slot booked
        appointment.status = data.status
        if data.status == NO_SHOW_STATUS:
            appointment.cancel_reason = data.reason
        db.commit()
        db.refresh(appointment)

        return AppointmentResponse.from_appointment(appointment)
    except SchedulingError as exc:
        db.rollback()
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    doctor_id: int,
    appointment_date: date | None = Query(default=None, alias='date'),
    appointment_status: str | None = Query(default=None, alias='status'),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = get_doctor_or_404(db, doctor_id)
        if doctor.user_id != current_user.id and not is_admin(current_user):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the doctor can view these appointments.',
            )

        query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if appointment_date is not None:
            query = query.filter(Appointment.date == appointment_date)
        if appointment_status:
            query = query.filter(Appointment.status == appointment_status)

        appointments = query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()
        return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/patient/{patient_id}', response_model=list[AppointmentResponse])
def list_patient_appointments(
    patient_id: int,
    upcoming: bool = Query(default=False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if patient_id != current_user.id and not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Patients can only view their own appointments.',
        )

    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if upcoming:
            query = query.filter(
                Appointment.date >= date.today(),
                Appointment.status == SCHEDULED_STATUS,
            )

        appointments = query.order_by(Appointment.date.asc(), Appointment.start_time.asc()).all()
        return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        ensure_can_manage(db, appointment, current_user)

        return AppointmentResponse.from_appointment(appointment)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
