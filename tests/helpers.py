import uuid

from roombook.errors import BookingNotFound, TransportFailure
from roombook.models import BookingCreate, BookingRead

DAY = "2025-09-01"


def booking(start, end, room="White", date=DAY, teacher="Sasha", lesson_type="Group", **extra):
    return BookingCreate(
        date=date,
        room=room,
        start=start,
        end=end,
        teacher=teacher,
        lesson_type=lesson_type,
        **extra,
    )


def stored(start, end, room="White", date=DAY, booking_id=None, **extra):
    data = booking(start, end, room=room, date=date, **extra)
    return BookingRead(id=booking_id or uuid.uuid4(), **data.model_dump(exclude={"id"}))


class FakeBackend:
    """In-memory stand-in for the repository with switchable failures."""

    def __init__(self, rows=()):
        self.rows = {row.id: row for row in rows}
        self.fail_with = None
        self.inserted = []
        self.deleted = []

    async def list_for_date(self, date):
        if self.fail_with is not None:
            raise self.fail_with
        return sorted((r for r in self.rows.values() if r.date == date), key=lambda r: r.start)

    async def insert(self, data):
        if self.fail_with is not None:
            raise self.fail_with
        row = BookingRead(id=data.id or uuid.uuid4(), **data.model_dump(exclude={"id"}))
        self.rows[row.id] = row
        self.inserted.append(row)
        return row

    async def replace(self, booking_id, times):
        if self.fail_with is not None:
            raise self.fail_with
        row = self.rows[booking_id].model_copy(update={"start": times.start, "end": times.end})
        self.rows[booking_id] = row
        return row

    async def delete(self, booking_id):
        if self.fail_with is not None:
            raise self.fail_with
        if booking_id not in self.rows:
            raise BookingNotFound(f"Booking {booking_id} not found")
        del self.rows[booking_id]
        self.deleted.append(booking_id)


def offline():
    return TransportFailure("connection refused")
