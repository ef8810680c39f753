"""Overlap checks for candidate bookings.

These checks are advisory: they decide whether the save action is enabled
and whether a draft renders as valid. The storage tier is what actually
guarantees that two bookings in one room never overlap.

Anything with ``date``, ``room``, ``start`` and ``end`` attributes can be
checked, so drafts and stored bookings go through the same code.
"""

from typing import Iterable, List

from .constants import END_MIN, GRID_MIN, MIN_DURATION, START_MIN
from .errors import ConstraintViolation, ValidationFailure
from .interval_math import format_minutes, overlaps


def same_scope(existing: Iterable, date: str, room: str) -> List:
    """Bookings sharing ``date`` and ``room``, ordered by start."""
    scoped = [b for b in existing if b.date == date and b.room == room]
    scoped.sort(key=lambda b: b.start)
    return scoped


def find_conflicts(candidate, existing: Iterable) -> List:
    # A stored booking being moved must not clash with its old self
    own_id = getattr(candidate, "id", None)
    return [
        b
        for b in same_scope(existing, candidate.date, candidate.room)
        if (own_id is None or b.id != own_id)
        and overlaps(candidate.start, candidate.end, b.start, b.end)
    ]


def is_valid(candidate, existing: Iterable) -> bool:
    if candidate.end - candidate.start < MIN_DURATION:
        return False
    return not find_conflicts(candidate, existing)


def validate_interval(start: int, end: int) -> None:
    """Raise ValidationFailure unless ``[start, end)`` could be stored."""
    if start >= end:
        raise ValidationFailure(f"Start {format_minutes(start)} is not before end {format_minutes(end)}")
    if end - start < MIN_DURATION:
        raise ValidationFailure(f"Booking must last at least {MIN_DURATION} minutes")
    if start < START_MIN or end > END_MIN:
        raise ValidationFailure(
            f"Booking must fall within {format_minutes(START_MIN)}-{format_minutes(END_MIN)}"
        )
    if (start - START_MIN) % GRID_MIN or (end - START_MIN) % GRID_MIN:
        raise ValidationFailure(f"Booking times must be on the {GRID_MIN}-minute grid")


def validate_booking(candidate, existing: Iterable = ()) -> None:
    """Raise ValidationFailure for a malformed interval and ConstraintViolation
    when ``candidate`` overlaps one of ``existing`` in its room."""
    validate_interval(candidate.start, candidate.end)
    clashes = find_conflicts(candidate, existing)
    if clashes:
        first = clashes[0]
        raise ConstraintViolation(
            f"{candidate.room} is already booked {format_minutes(first.start)}-{format_minutes(first.end)}"
            f" on {candidate.date}"
        )
