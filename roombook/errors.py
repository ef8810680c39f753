"""Error kinds raised by the booking core.

Every error is scoped to the operation that raised it; none of them should
take the process down.
"""


class BookingError(Exception):
    """Base class for booking failures."""


class ValidationFailure(BookingError):
    """The candidate breaks a booking invariant. Never reaches storage."""


class ConstraintViolation(BookingError):
    """Storage rejected the write because the slot is already taken."""


class TransportFailure(BookingError):
    """Storage or network was unavailable. Safe to retry."""


class BookingNotFound(BookingError):
    """No booking with the given id exists."""
