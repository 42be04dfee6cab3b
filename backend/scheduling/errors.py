"""Errors raised by the availability engine."""


class SchedulingError(Exception):
    """Base class for availability engine errors."""


class ScheduleValidationError(SchedulingError, ValueError):
    """Malformed input: bad date, bad day name or a non-chronological range."""


class SlotConflict(SchedulingError):
    """The requested range does not fit inside a single free slot."""


class StaleAvailability(SlotConflict):
    """The availability record changed between read and commit."""


class BookedSlotLocked(SlotConflict):
    """A schedule edit tried to remove, move or invent a booked slot."""


class DuplicateBooking(SchedulingError):
    """The identical booking has already been applied."""

    def __init__(self, message: str, appointment_id: int | None = None) -> None:
        super().__init__(message)
        self.appointment_id = appointment_id


class BookingNotFound(SchedulingError):
    """No booked slot matches the booking being released."""


class EmptyQuery(SchedulingError):
    """Search was called without a date or a name."""
