import uuid
from datetime import date as calendar_date
from typing import Optional

from pydantic import ConfigDict, field_validator
from sqlalchemy import DDL, CheckConstraint, Column, String, event
from sqlmodel import Field, SQLModel

from .constants import END_MIN, GRID_MIN, MIN_DURATION, NOTE_MAX_LENGTH, START_MIN, LessonType, Room, Teacher


class BookingTimes(SQLModel):
    start: int
    end: int


class BookingBase(BookingTimes):
    # Python code says lesson_type; JSON and the stored column say "type"
    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)

    date: str = Field(index=True, max_length=10)
    room: Room = Field(sa_type=String, index=True)
    teacher: Teacher = Field(sa_type=String)
    lesson_type: LessonType = Field(alias="type")
    note: Optional[str] = Field(default=None, max_length=NOTE_MAX_LENGTH)

    @field_validator("date")
    @classmethod
    def date_is_calendar_day(cls, value: str) -> str:
        # Raises ValueError for anything but YYYY-MM-DD
        return calendar_date.fromisoformat(value).isoformat()

    @field_validator("note")
    @classmethod
    def blank_note_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class Booking(BookingBase, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint('start < "end"', name="start_before_end"),
        CheckConstraint(f'"end" - start >= {MIN_DURATION}', name="min_duration"),
        CheckConstraint(f'start >= {START_MIN} AND "end" <= {END_MIN}', name="within_day"),
        CheckConstraint(
            f'(start - {START_MIN}) % {GRID_MIN} = 0 AND ("end" - {START_MIN}) % {GRID_MIN} = 0',
            name="on_grid",
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    lesson_type: LessonType = Field(sa_column=Column("type", String, nullable=False))


class BookingCreate(BookingBase):
    id: Optional[uuid.UUID] = None


class BookingRead(BookingBase):
    id: uuid.UUID


# CRITICAL: Database-level protection against double booking.
# The half-open range column and the gist exclusion need PostgreSQL with
# btree_gist; other dialects rely on the repository's serialized re-check.
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        "ALTER TABLE bookings ADD COLUMN IF NOT EXISTS time_range int4range "
        "GENERATED ALWAYS AS (int4range(start, \"end\", '[)')) STORED"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        "ALTER TABLE bookings ADD CONSTRAINT no_overlaps "
        "EXCLUDE USING gist (date WITH =, room WITH =, time_range WITH &&)"
    ).execute_if(dialect="postgresql"),
)
