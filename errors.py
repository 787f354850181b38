from __future__ import annotations

from typing import Sequence, Tuple

from models import Booking


class BookingError(Exception):
    """Base class for domain/service errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message
        # Bookings already committed by a multi-room call before it failed
        self.completed_bookings: Tuple[Booking, ...] = ()

    def with_completed(self, bookings: Sequence[Booking]) -> "BookingError":
        self.completed_bookings = tuple(bookings)
        return self


class InvalidTimeRangeError(BookingError):
    pass


class InvalidRecurrenceError(BookingError):
    pass


class EmptyRecurrenceError(BookingError):
    pass


class RoomConflictError(BookingError):
    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class BackendUnavailableError(BookingError):
    """The store could not answer, or answered with rows we cannot map."""


class BookingNotFoundError(BookingError):
    pass


class VisitNotFoundError(BookingError):
    pass


class UnknownVisitorError(BookingError):
    """A visit names a contractor or partner that is not on record."""
