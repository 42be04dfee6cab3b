"""Effective availability per calendar date.

Precedence for one date, checked in order:

1. an active single-date record without slots blocks the date;
2. an active single-date record with slots replaces the weekly pattern;
3. otherwise the recurring record for that weekday applies, if it has slots.

Single-date slots never merge with recurring slots for the same date.
"""

import calendar
import logging
from collections.abc import Iterable, Sequence
from datetime import date, timedelta

from backend.scheduling.domain import (
    AvailabilityRecord,
    AvailabilitySource,
    DayOfWeek,
    RecurringAvailability,
    ResolvedDayAvailability,
    SingleAvailability,
)
from backend.scheduling.errors import ScheduleValidationError
from backend.scheduling.slots import DEFAULT_GRANULARITY_MINUTES, expand_slots

logger = logging.getLogger(__name__)


def month_bounds(month_anchor: date) -> tuple[date, date]:
    _, days_in_month = calendar.monthrange(month_anchor.year, month_anchor.month)
    first_day = month_anchor.replace(day=1)
    return first_day, first_day.replace(day=days_in_month)


def iter_dates(first_day: date, last_day: date) -> Iterable[date]:
    current_day = first_day
    while current_day <= last_day:
        yield current_day
        current_day += timedelta(days=1)


def split_records(records: Iterable[AvailabilityRecord]) -> tuple[list[RecurringAvailability], list[SingleAvailability]]:
    recurring: list[RecurringAvailability] = []
    single: list[SingleAvailability] = []

    for record in records:
        if isinstance(record, RecurringAvailability):
            recurring.append(record)
        elif isinstance(record, SingleAvailability):
            single.append(record)
        else:
            raise ScheduleValidationError(f'Unknown availability record {record!r}.')

    return recurring, single


def records_for_month(
    records: Iterable[AvailabilityRecord],
    month_anchor: date,
) -> tuple[list[RecurringAvailability], list[SingleAvailability]]:
    """Split ``records`` into the inputs of ``resolve_month`` for one month."""
    first_day, last_day = month_bounds(month_anchor)
    recurring, single = split_records(records)
    return recurring, [record for record in single if first_day <= record.date <= last_day]


def index_recurring(doctor_id: int, recurring_records: Iterable[AvailabilityRecord]) -> dict[DayOfWeek, RecurringAvailability]:
    by_day: dict[DayOfWeek, RecurringAvailability] = {}

    for record in recurring_records:
        if not isinstance(record, RecurringAvailability):
            raise ScheduleValidationError(f'Expected a recurring record, got {record!r}.')
        if record.doctor_id != doctor_id or not record.is_active:
            continue

        day_of_week = DayOfWeek.parse(record.day_of_week)
        if day_of_week in by_day:
            raise ScheduleValidationError(f'Doctor {doctor_id} has more than one recurring record for {day_of_week.value}.')
        by_day[day_of_week] = record

    return by_day


def partition_single(
    doctor_id: int,
    single_records: Iterable[AvailabilityRecord],
) -> tuple[set[date], dict[date, SingleAvailability]]:
    blocked: set[date] = set()
    overridden: dict[date, SingleAvailability] = {}

    for record in single_records:
        if not isinstance(record, SingleAvailability):
            raise ScheduleValidationError(f'Expected a single-date record, got {record!r}.')
        if record.doctor_id != doctor_id or not record.is_active:
            continue

        if record.date in blocked or record.date in overridden:
            raise ScheduleValidationError(
                f'Doctor {doctor_id} has more than one single-date record for {record.date.isoformat()}.'
            )

        if record.is_block:
            blocked.add(record.date)
        else:
            overridden[record.date] = record

    return blocked, overridden


def _resolve(
    day: date,
    blocked: set[date],
    overridden: dict[date, SingleAvailability],
    recurring_by_day: dict[DayOfWeek, RecurringAvailability],
    granularity_minutes: int,
) -> ResolvedDayAvailability | None:
    day_of_week = DayOfWeek.from_date(day)

    if day in blocked:
        return ResolvedDayAvailability(day, day_of_week, (), AvailabilitySource.BLOCKED)

    if day in overridden:
        return ResolvedDayAvailability(
            day,
            day_of_week,
            tuple(expand_slots(overridden[day].time_slots, granularity_minutes)),
            AvailabilitySource.FROM_SINGLE_OVERRIDE,
        )

    recurring = recurring_by_day.get(day_of_week)
    if recurring is not None and recurring.time_slots:
        return ResolvedDayAvailability(
            day,
            day_of_week,
            tuple(expand_slots(recurring.time_slots, granularity_minutes)),
            AvailabilitySource.FROM_RECURRING,
        )

    return None


def resolve_month(
    doctor_id: int,
    month_anchor: date,
    recurring_records: Sequence[AvailabilityRecord],
    single_records: Sequence[AvailabilityRecord],
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> dict[date, ResolvedDayAvailability]:
    """Resolve every date of ``month_anchor``'s month for one doctor.

    Dates with no availability at all are absent from the result; blocked
    dates are present with no slots. Single-date records dated outside the
    month are rejected rather than skipped.
    """
    first_day, last_day = month_bounds(month_anchor)

    for record in single_records:
        if isinstance(record, SingleAvailability) and not first_day <= record.date <= last_day:
            raise ScheduleValidationError(
                f'Single-date record for {record.date.isoformat()} is outside '
                f'{first_day.strftime("%Y-%m")}.'
            )

    blocked, overridden = partition_single(doctor_id, single_records)
    recurring_by_day = index_recurring(doctor_id, recurring_records)

    resolution: dict[date, ResolvedDayAvailability] = {}
    for day in iter_dates(first_day, last_day):
        resolved = _resolve(day, blocked, overridden, recurring_by_day, granularity_minutes)
        if resolved is not None:
            resolution[day] = resolved

    logger.debug(
        'Resolved %s for doctor %s: %d dates with entries, %d blocked',
        first_day.strftime('%Y-%m'),
        doctor_id,
        len(resolution),
        len(blocked),
    )
    return resolution


def resolve_date(
    doctor_id: int,
    day: date,
    records: Iterable[AvailabilityRecord],
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> ResolvedDayAvailability | None:
    recurring, single = split_records(records)
    blocked, overridden = partition_single(doctor_id, [record for record in single if record.date == day])
    return _resolve(day, blocked, overridden, index_recurring(doctor_id, recurring), granularity_minutes)


def resolve_range(
    doctor_id: int,
    start_date: date,
    end_date: date,
    records: Sequence[AvailabilityRecord],
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> dict[date, ResolvedDayAvailability]:
    if start_date > end_date:
        raise ScheduleValidationError('Start date must be on or before end date.')

    resolution: dict[date, ResolvedDayAvailability] = {}
    month_anchor = start_date.replace(day=1)

    while month_anchor <= end_date:
        recurring, single = records_for_month(records, month_anchor)
        for day, resolved in resolve_month(doctor_id, month_anchor, recurring, single, granularity_minutes).items():
            if start_date <= day <= end_date:
                resolution[day] = resolved
        month_anchor = month_bounds(month_anchor)[1] + timedelta(days=1)

    return resolution


def available_dates(resolution: dict[date, ResolvedDayAvailability]) -> list[date]:
    return sorted(day for day, resolved in resolution.items() if resolved.is_available)
