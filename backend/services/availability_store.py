"""Persistence of availability records.

Rows keep their slots as a JSON document in the wire shape
(``startTime``/``endTime``/``isBooked``/``appointmentId``). Single-date writes
are conditional on the row version read before the change, so two sessions
reconciling the same date cannot both win.
"""

import logging
from collections.abc import Iterable
from datetime import date

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.availability import Availability
from backend.models.doctor import Doctor
from backend.scheduling.domain import (
    AvailabilityKind,
    AvailabilityRecord,
    DayOfWeek,
    DoctorSummary,
    RecurringAvailability,
    SingleAvailability,
    TimeSlot,
)
from backend.scheduling.errors import ScheduleValidationError, StaleAvailability
from backend.scheduling.slots import sort_slots

logger = logging.getLogger(__name__)


def slots_payload(slots: Iterable[TimeSlot]) -> list[dict]:
    return [slot.to_dict() for slot in sort_slots(slots)]


def row_to_record(row: Availability) -> AvailabilityRecord:
    slots = tuple(TimeSlot.from_dict(item) for item in (row.time_slots or []))

    if row.kind == AvailabilityKind.RECURRING.value:
        return RecurringAvailability(
            doctor_id=row.doctor_id,
            day_of_week=DayOfWeek.parse(row.day_of_week),
            time_slots=slots,
            id=row.id,
            is_active=bool(row.is_active),
        )
    if row.kind == AvailabilityKind.SINGLE.value:
        return SingleAvailability(
            doctor_id=row.doctor_id,
            date=row.date,
            time_slots=slots,
            id=row.id,
            is_active=bool(row.is_active),
        )
    raise ScheduleValidationError(f'Availability {row.id} has unknown kind {row.kind!r}.')


class RecordSnapshot:
    """Records as read from the database, with the versions they were read at."""

    def __init__(self, rows: Iterable[Availability]) -> None:
        rows = list(rows)
        self.records: list[AvailabilityRecord] = [row_to_record(row) for row in rows]
        self.versions: dict[int, int] = {row.id: row.version or 1 for row in rows}

    def version_of(self, record: AvailabilityRecord) -> int | None:
        if record.id is None:
            return None
        return self.versions.get(record.id)


def load_doctor_snapshot(db: Session, doctor_id: int, include_inactive: bool = False) -> RecordSnapshot:
    query = db.query(Availability).filter(Availability.doctor_id == doctor_id)
    if not include_inactive:
        query = query.filter(Availability.is_active.is_(True))
    return RecordSnapshot(query.order_by(Availability.kind.asc(), Availability.id.asc()).all())


def load_records_for_date(db: Session, day: date) -> list[AvailabilityRecord]:
    rows = db.query(Availability).filter(
        Availability.is_active.is_(True),
        or_(
            and_(
                Availability.kind == AvailabilityKind.RECURRING.value,
                Availability.day_of_week == DayOfWeek.from_date(day).value,
            ),
            and_(
                Availability.kind == AvailabilityKind.SINGLE.value,
                Availability.date == day,
            ),
        ),
    ).all()
    return [row_to_record(row) for row in rows]


def load_doctor_summaries(db: Session) -> list[DoctorSummary]:
    doctors = db.query(Doctor).order_by(Doctor.id.asc()).all()
    return [
        DoctorSummary(id=doctor.id, display_name=doctor.display_name, speciality=doctor.speciality)
        for doctor in doctors
    ]


def _compare_and_swap(db: Session, row_id: int, expected_version: int, values: dict) -> None:
    updated = db.query(Availability).filter(
        Availability.id == row_id,
        Availability.version == expected_version,
    ).update(
        {**values, Availability.version: expected_version + 1},
        synchronize_session='fetch',
    )
    if updated != 1:
        logger.warning('Availability %s changed since version %s was read', row_id, expected_version)
        raise StaleAvailability('Availability changed while it was being updated. Refresh and try again.')


def save_single(
    db: Session,
    record: SingleAvailability,
    snapshot: RecordSnapshot,
    user_id: int | None = None,
) -> SingleAvailability:
    """Write a single-date record guarded by the version in ``snapshot``.

    Does not commit.
    """
    values = {
        Availability.time_slots: slots_payload(record.time_slots),
        Availability.is_active: True,
        Availability.updated_by: user_id,
    }

    if record.id is not None:
        expected_version = snapshot.version_of(record)
        if expected_version is None:
            raise StaleAvailability(f'Availability {record.id} was not part of the records that were read.')
        _compare_and_swap(db, record.id, expected_version, values)
        return record

    existing = db.query(Availability).filter(
        Availability.doctor_id == record.doctor_id,
        Availability.kind == AvailabilityKind.SINGLE.value,
        Availability.date == record.date,
    ).first()

    if existing is not None:
        if existing.is_active:
            raise StaleAvailability(f'Availability for {record.date.isoformat()} was created by another request.')
        _compare_and_swap(db, existing.id, existing.version or 1, values)
        return SingleAvailability(record.doctor_id, record.date, record.time_slots, id=existing.id)

    row = Availability(
        doctor_id=record.doctor_id,
        kind=AvailabilityKind.SINGLE.value,
        date=record.date,
        time_slots=slots_payload(record.time_slots),
        is_active=True,
        version=1,
        created_by=user_id,
        updated_by=user_id,
    )
    db.add(row)
    try:
        db.flush()
    except IntegrityError as exc:
        raise StaleAvailability(f'Availability for {record.date.isoformat()} was created by another request.') from exc

    return SingleAvailability(record.doctor_id, record.date, record.time_slots, id=row.id)


def save_weekly_schedule(
    db: Session,
    doctor_id: int,
    schedule: dict[DayOfWeek, RecurringAvailability],
    user_id: int | None = None,
) -> list[RecurringAvailability]:
    """Replace the weekly pattern; days without slots are deactivated. Does not commit."""
    rows = {
        row.day_of_week: row
        for row in db.query(Availability).filter(
            Availability.doctor_id == doctor_id,
            Availability.kind == AvailabilityKind.RECURRING.value,
        ).all()
    }

    for day_of_week, record in schedule.items():
        row = rows.get(day_of_week.value)
        payload = slots_payload(record.time_slots)

        if row is None:
            if not record.time_slots:
                continue
            row = Availability(
                doctor_id=doctor_id,
                kind=AvailabilityKind.RECURRING.value,
                day_of_week=day_of_week.value,
                time_slots=payload,
                is_active=True,
                version=1,
                created_by=user_id,
                updated_by=user_id,
            )
            db.add(row)
            rows[day_of_week.value] = row
            continue

        row.time_slots = payload
        row.is_active = bool(record.time_slots)
        row.version = (row.version or 1) + 1
        row.updated_by = user_id

    db.flush()

    saved = [row_to_record(row) for row in rows.values() if row.is_active]
    return sorted(saved, key=lambda record: list(DayOfWeek).index(record.day_of_week))


def save_record(db: Session, record: AvailabilityRecord, snapshot: RecordSnapshot, user_id: int | None = None) -> AvailabilityRecord:
    if isinstance(record, SingleAvailability):
        return save_single(db, record, snapshot, user_id)
    if isinstance(record, RecurringAvailability):
        expected_version = snapshot.version_of(record)
        if expected_version is None:
            raise StaleAvailability(f'Availability {record.id} was not part of the records that were read.')
        _compare_and_swap(
            db,
            record.id,
            expected_version,
            {
                Availability.time_slots: slots_payload(record.time_slots),
                Availability.is_active: bool(record.time_slots),
                Availability.updated_by: user_id,
            },
        )
        return record
    raise ScheduleValidationError(f'Unknown availability record {record!r}.')
