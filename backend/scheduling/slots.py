from collections.abc import Iterable, Sequence

from backend.scheduling.domain import TimeSlot, from_minutes, to_minutes
from backend.scheduling.errors import ScheduleValidationError

DEFAULT_GRANULARITY_MINUTES = 60


def generate_slots(source: TimeSlot, granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES) -> list[TimeSlot]:
    """Tile ``source`` into ``granularity_minutes`` slots, left to right.

    A trailing remainder shorter than one unit becomes a final short slot, and
    a range no longer than one unit is returned unchanged. Every emitted slot
    keeps the booked flag and appointment of ``source``.
    """
    if granularity_minutes <= 0:
        raise ScheduleValidationError('Slot granularity must be a positive number of minutes.')

    start = to_minutes(source.start_time)
    end = to_minutes(source.end_time)

    if end - start <= granularity_minutes:
        return [source]

    slots: list[TimeSlot] = []
    current = start
    while current < end:
        slot_end = min(current + granularity_minutes, end)
        slots.append(source.with_range(from_minutes(current), from_minutes(slot_end)))
        current = slot_end

    return slots


def expand_slots(slots: Iterable[TimeSlot], granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES) -> list[TimeSlot]:
    """Tile the free slots; booked slots stay whole so each booking keeps one range."""
    expanded: list[TimeSlot] = []
    for slot in sort_slots(slots):
        if slot.is_booked:
            expanded.append(slot)
        else:
            expanded.extend(generate_slots(slot, granularity_minutes))
    return expanded


def sort_slots(slots: Iterable[TimeSlot]) -> list[TimeSlot]:
    return sorted(slots, key=lambda slot: (slot.start_time, slot.end_time))


def ensure_no_overlap(slots: Sequence[TimeSlot]) -> list[TimeSlot]:
    ordered = sort_slots(slots)
    for previous, current in zip(ordered, ordered[1:]):
        if current.start_time < previous.end_time:
            raise ScheduleValidationError(
                f'Time slots {previous.time_range} and {current.time_range} overlap.'
            )
    return ordered


def merge_adjacent_free(slots: Sequence[TimeSlot], anchor: TimeSlot) -> list[TimeSlot]:
    """Merge the free ``anchor`` with the free slots touching it on either side.

    Only the contiguous run containing ``anchor`` is merged; other free slots of
    the list keep their boundaries.
    """
    ordered = sort_slots(slots)
    index = ordered.index(anchor)

    first = index
    while first > 0 and _joins(ordered[first - 1], ordered[first]):
        first -= 1

    last = index
    while last < len(ordered) - 1 and _joins(ordered[last], ordered[last + 1]):
        last += 1

    merged = TimeSlot(ordered[first].start_time, ordered[last].end_time)
    return ordered[:first] + [merged] + ordered[last + 1:]


def _joins(left: TimeSlot, right: TimeSlot) -> bool:
    return not left.is_booked and not right.is_booked and left.end_time == right.start_time
