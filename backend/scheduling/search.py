from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

from backend.scheduling.domain import (
    AvailabilityRecord,
    DoctorSummary,
    SearchCriteria,
    SearchMatch,
)
from backend.scheduling.errors import EmptyQuery
from backend.scheduling.resolver import resolve_date
from backend.scheduling.slots import DEFAULT_GRANULARITY_MINUTES


def matches_name(display_name: str, name_prefix: str) -> bool:
    """Case-insensitive prefix match on the full name or any word of it."""
    prefix = name_prefix.strip().casefold()
    name = display_name.strip().casefold()
    return name.startswith(prefix) or any(word.startswith(prefix) for word in name.split())


def search(
    criteria: SearchCriteria,
    doctors: Sequence[DoctorSummary],
    records: Iterable[AvailabilityRecord],
    today: date,
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> list[SearchMatch]:
    """Doctors with at least one free slot on the searched date.

    Without a date the search checks ``today``. A time narrows the free slots
    to the ones containing it but does not count as a facet on its own.
    Results are ordered by name, then id, so identical searches line up.
    """
    name_prefix = (criteria.name_prefix or '').strip()
    if criteria.date is None and not name_prefix:
        raise EmptyQuery('Provide a date or a doctor name to search.')

    target_date = criteria.date or today

    records_by_doctor: dict[int, list[AvailabilityRecord]] = defaultdict(list)
    for record in records:
        records_by_doctor[record.doctor_id].append(record)

    matches: list[SearchMatch] = []
    for doctor in doctors:
        if name_prefix and not matches_name(doctor.display_name, name_prefix):
            continue

        resolved = resolve_date(doctor.id, target_date, records_by_doctor.get(doctor.id, ()), granularity_minutes)
        if resolved is None:
            continue

        free_slots = resolved.free_slots
        if criteria.time is not None:
            free_slots = tuple(
                slot for slot in free_slots if slot.start_time <= criteria.time < slot.end_time
            )
        if not free_slots:
            continue

        matches.append(SearchMatch(doctor, target_date, free_slots, resolved.source))

    matches.sort(key=lambda match: (match.doctor.display_name.casefold(), match.doctor.id))
    return matches
