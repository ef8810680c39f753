"""Persistence of bookings.

The repository is the only writer of the bookings table. Each write that can
create an overlap re-checks the committed rows of its (date, room) inside the
write's transaction while holding a lock for that scope. On PostgreSQL the
exclusion constraint backs this up across processes; a rejected write from
either path surfaces as ConstraintViolation.

Other dialects have only the in-process lock, so a SQLite database must be
written by a single process.
"""

import asyncio
import contextlib
import logging
import uuid
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .changes import ChangeFeed, Deleted, Inserted, Updated
from .conflicts import validate_booking, validate_interval
from .errors import BookingNotFound, ConstraintViolation, TransportFailure
from .interval_math import format_minutes
from .models import Booking, BookingCreate, BookingRead, BookingTimes

logger = logging.getLogger(__name__)


class BookingRepository:
    def __init__(self, session_factory, feed: Optional[ChangeFeed] = None):
        self._session_factory = session_factory
        self.feed = feed if feed is not None else ChangeFeed()
        # (date, room) -> [lock, holders and waiters]
        self._scope_locks: Dict[Tuple[str, str], list] = {}

    @contextlib.asynccontextmanager
    async def _scope(self, date: str, room: str):
        key = (date, room)
        entry = self._scope_locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._scope_locks[key]

    async def list_for_date(self, date: str) -> List[BookingRead]:
        statement = select(Booking).where(Booking.date == date).order_by(Booking.start)
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                bookings = result.scalars().all()
        except (DBAPIError, OSError) as exc:
            raise TransportFailure(f"Could not load bookings for {date}: {exc}") from exc
        return [BookingRead.model_validate(b) for b in bookings]

    async def insert(self, data: BookingCreate) -> BookingRead:
        validate_interval(data.start, data.end)
        booking = Booking(id=data.id or uuid.uuid4(), **data.model_dump(exclude={"id"}))

        async with self._scope(booking.date, booking.room):
            async with self._session_factory() as session:
                try:
                    await self._ensure_free(session, booking)
                    session.add(booking)
                    await session.commit()
                    await session.refresh(booking)
                except IntegrityError as exc:
                    # This catches the exclusion constraint violation from PostgreSQL
                    await session.rollback()
                    logger.info("Insert of %s rejected by storage: %s", booking.id, exc.orig)
                    raise ConstraintViolation("Slot already booked for this room and time.") from exc
                except ConstraintViolation:
                    await session.rollback()
                    raise
                except (DBAPIError, OSError) as exc:
                    await session.rollback()
                    raise TransportFailure(f"Could not save booking: {exc}") from exc

        stored = BookingRead.model_validate(booking)
        logger.info(
            "Booked %s %s %s-%s (%s)",
            stored.room,
            stored.date,
            format_minutes(stored.start),
            format_minutes(stored.end),
            stored.id,
        )
        self.feed.publish(Inserted(stored))
        return stored

    async def replace(self, booking_id: uuid.UUID, times: BookingTimes) -> BookingRead:
        """Move an existing booking to new times within its date and room."""
        validate_interval(times.start, times.end)
        current = await self._get(booking_id)

        async with self._scope(current.date, current.room):
            async with self._session_factory() as session:
                try:
                    booking = await session.get(Booking, booking_id)
                    if booking is None:
                        raise BookingNotFound(f"Booking {booking_id} not found")
                    moved = BookingRead.model_validate(booking).model_copy(
                        update={"start": times.start, "end": times.end}
                    )
                    await self._ensure_free(session, moved)
                    booking.start = times.start
                    booking.end = times.end
                    session.add(booking)
                    await session.commit()
                    await session.refresh(booking)
                except IntegrityError as exc:
                    await session.rollback()
                    raise ConstraintViolation("Slot already booked for this room and time.") from exc
                except (ConstraintViolation, BookingNotFound):
                    await session.rollback()
                    raise
                except (DBAPIError, OSError) as exc:
                    await session.rollback()
                    raise TransportFailure(f"Could not update booking: {exc}") from exc

        stored = BookingRead.model_validate(booking)
        logger.info("Moved %s to %s-%s", booking_id, format_minutes(stored.start), format_minutes(stored.end))
        self.feed.publish(Updated(stored))
        return stored

    async def delete(self, booking_id: uuid.UUID) -> None:
        async with self._session_factory() as session:
            try:
                booking = await session.get(Booking, booking_id)
                if booking is None:
                    raise BookingNotFound(f"Booking {booking_id} not found")
                await session.delete(booking)
                await session.commit()
            except (DBAPIError, OSError) as exc:
                await session.rollback()
                raise TransportFailure(f"Could not delete booking: {exc}") from exc

        logger.info("Deleted booking %s", booking_id)
        self.feed.publish(Deleted(booking_id))

    async def _get(self, booking_id: uuid.UUID) -> Booking:
        try:
            async with self._session_factory() as session:
                booking = await session.get(Booking, booking_id)
        except (DBAPIError, OSError) as exc:
            raise TransportFailure(f"Could not load booking {booking_id}: {exc}") from exc
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    async def _ensure_free(self, session: AsyncSession, candidate) -> None:
        """Raise ConstraintViolation if ``candidate`` overlaps a committed row."""
        statement = select(Booking).where(
            Booking.date == candidate.date,
            Booking.room == candidate.room,
            Booking.start < candidate.end,
            Booking.end > candidate.start,
        )
        result = await session.execute(statement)
        try:
            validate_booking(candidate, result.scalars().all())
        except ConstraintViolation as exc:
            logger.info("Rejected %s: %s", getattr(candidate, "id", None), exc)
            raise
