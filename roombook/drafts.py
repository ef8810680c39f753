"""Interactive creation and editing of an unsaved booking.

The editing session is a small state machine driven by pointer events over
the scheduling surface of one (date, room):

    Idle --tap--> DraftActive --save/cancel--> Idle

A tap is a pointer press and release that moved no more than
TAP_THRESHOLD_PX in either axis; anything longer is treated as a scroll and
creates nothing. While a draft exists, pressing its body, top handle or
bottom handle starts a move, resize-start or resize-end gesture that lasts
until the same pointer is released.

``transition`` is pure: it takes the current state, one event and the
bookings the draft must not overlap, and returns the next state. Pointer
coordinates are in pixels relative to the top of the scrollable content.
``DraftEditor`` feeds it events and performs the one side effect, saving.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Optional, Union

from .constants import (
    DEFAULT_DURATION,
    END_MIN,
    MIN_DURATION,
    PX_PER_MIN,
    START_MIN,
    TAP_THRESHOLD_PX,
    LessonType,
    Teacher,
)
from .conflicts import is_valid
from .errors import BookingError, ConstraintViolation, TransportFailure, ValidationFailure
from .interval_math import clamp, format_minutes, snap
from .models import BookingCreate, BookingRead
from .store import BookingStore

logger = logging.getLogger(__name__)


class Target(str, Enum):
    SURFACE = "surface"
    PANEL = "panel"
    DRAFT_BODY = "draft-body"
    DRAFT_TOP = "draft-top"
    DRAFT_BOTTOM = "draft-bottom"


class Gesture(str, Enum):
    MOVE = "move"
    RESIZE_START = "resize-start"
    RESIZE_END = "resize-end"


_GESTURES = {
    Target.DRAFT_BODY: Gesture.MOVE,
    Target.DRAFT_TOP: Gesture.RESIZE_START,
    Target.DRAFT_BOTTOM: Gesture.RESIZE_END,
}


# ---------- events ----------


@dataclass(frozen=True)
class PointerDown:
    x: float
    y: float
    target: Target = Target.SURFACE
    pointer_id: int = 1
    button: int = 0


@dataclass(frozen=True)
class PointerMove:
    x: float
    y: float
    target: Target = Target.SURFACE
    pointer_id: int = 1


@dataclass(frozen=True)
class PointerUp:
    x: float
    y: float
    target: Target = Target.SURFACE
    pointer_id: int = 1


@dataclass(frozen=True)
class SetDetails:
    """Fill in the form next to the draft. None leaves a field unchanged."""

    teacher: Optional[Teacher] = None
    lesson_type: Optional[LessonType] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class SelectScope:
    date: str
    room: str


@dataclass(frozen=True)
class Cancel:
    pass


@dataclass(frozen=True)
class Save:
    pass


Event = Union[PointerDown, PointerMove, PointerUp, SetDetails, SelectScope, Cancel, Save]


# ---------- draft values ----------


def _draft_id() -> str:
    return f"draft-{uuid.uuid4().hex[:7]}"


@dataclass(frozen=True)
class Draft:
    date: str
    room: str
    start: int
    end: int
    id: str = field(default_factory=_draft_id)
    teacher: Optional[Teacher] = None
    lesson_type: Optional[LessonType] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class ReadyToSave:
    """A draft with every field a booking needs. Only this can be saved."""

    date: str
    room: str
    start: int
    end: int
    teacher: Teacher
    lesson_type: LessonType
    note: Optional[str] = None

    def to_booking(self) -> BookingCreate:
        return BookingCreate(
            id=uuid.uuid4(),
            date=self.date,
            room=self.room,
            start=self.start,
            end=self.end,
            teacher=self.teacher,
            lesson_type=self.lesson_type,
            note=self.note,
        )


# ---------- states ----------


@dataclass(frozen=True)
class Tap:
    pointer_id: int
    origin_x: float
    origin_y: float
    moved: bool = False


@dataclass(frozen=True)
class Drag:
    gesture: Gesture
    pointer_id: int
    origin_y: float
    orig_start: int
    orig_end: int


@dataclass(frozen=True)
class Idle:
    date: str
    room: str
    tap: Optional[Tap] = None


@dataclass(frozen=True)
class DraftActive:
    draft: Draft
    valid: bool
    tap: Optional[Tap] = None
    drag: Optional[Drag] = None

    @property
    def date(self) -> str:
        return self.draft.date

    @property
    def room(self) -> str:
        return self.draft.room


State = Union[Idle, DraftActive]


# ---------- geometry ----------


def minutes_at(y: float) -> float:
    return START_MIN + y / PX_PER_MIN


def new_draft(date: str, room: str, y: float) -> Draft:
    start = clamp(snap(minutes_at(y)), START_MIN, END_MIN - MIN_DURATION)
    end = clamp(start + DEFAULT_DURATION, start + MIN_DURATION, END_MIN)
    return Draft(date=date, room=room, start=start, end=end)


def dragged(drag: Drag, y: float) -> tuple:
    """New (start, end) for a gesture whose pointer is now at ``y``."""
    delta = snap((y - drag.origin_y) / PX_PER_MIN, 1)

    if drag.gesture is Gesture.MOVE:
        duration = max(drag.orig_end - drag.orig_start, MIN_DURATION)
        start = clamp(snap(drag.orig_start + delta), START_MIN, END_MIN - duration)
        return start, start + duration

    if drag.gesture is Gesture.RESIZE_START:
        start = clamp(snap(drag.orig_start + delta), START_MIN, drag.orig_end - MIN_DURATION)
        return start, drag.orig_end

    end = clamp(snap(drag.orig_end + delta), drag.orig_start + MIN_DURATION, END_MIN)
    return drag.orig_start, end


def _moved_past_threshold(tap: Tap, x: float, y: float) -> bool:
    return abs(x - tap.origin_x) > TAP_THRESHOLD_PX or abs(y - tap.origin_y) > TAP_THRESHOLD_PX


# ---------- transitions ----------


def activate(draft: Draft, existing: Iterable) -> DraftActive:
    return DraftActive(draft=draft, valid=is_valid(draft, existing))


def revalidate(state: State, existing: Iterable) -> State:
    if isinstance(state, DraftActive):
        valid = is_valid(state.draft, existing)
        if valid != state.valid:
            return replace(state, valid=valid)
    return state


def transition(state: State, event: Event, existing: Iterable = ()) -> State:
    existing = list(existing)

    if isinstance(event, SelectScope):
        return Idle(date=event.date, room=event.room)

    if isinstance(event, Cancel):
        return Idle(date=state.date, room=state.room)

    if isinstance(event, SetDetails):
        if not isinstance(state, DraftActive):
            return state
        changes = {}
        if event.teacher is not None:
            changes["teacher"] = Teacher(event.teacher)
        if event.lesson_type is not None:
            changes["lesson_type"] = LessonType(event.lesson_type)
        if event.note is not None:
            changes["note"] = event.note
        return replace(state, draft=replace(state.draft, **changes))

    drag = state.drag if isinstance(state, DraftActive) else None

    if isinstance(event, PointerDown):
        if drag is not None:
            # One captured gesture at a time
            return state
        if event.target in _GESTURES:
            if not isinstance(state, DraftActive):
                return state
            draft = state.draft
            return replace(
                state,
                tap=None,
                drag=Drag(_GESTURES[event.target], event.pointer_id, event.y, draft.start, draft.end),
            )
        if event.target == Target.SURFACE and event.button == 0:
            return replace(state, tap=Tap(event.pointer_id, event.x, event.y))
        return replace(state, tap=None)

    if isinstance(event, PointerMove):
        if drag is not None:
            if event.pointer_id != drag.pointer_id:
                return state
            start, end = dragged(drag, event.y)
            draft = state.draft
            if (start, end) == (draft.start, draft.end):
                return state
            draft = replace(draft, start=start, end=end)
            return replace(state, draft=draft, valid=is_valid(draft, existing))
        tap = state.tap
        if tap is not None and event.pointer_id == tap.pointer_id and not tap.moved:
            if _moved_past_threshold(tap, event.x, event.y):
                return replace(state, tap=replace(tap, moved=True))
        return state

    if isinstance(event, PointerUp):
        if drag is not None:
            if event.pointer_id != drag.pointer_id:
                return state
            return replace(state, drag=None)
        tap = state.tap
        if tap is None or event.pointer_id != tap.pointer_id:
            return state
        if tap.moved or event.target == Target.PANEL:
            return replace(state, tap=None)
        # A fresh tap replaces whatever draft was open, details included
        return activate(new_draft(state.date, state.room, event.y), existing)

    raise TypeError(f"Unhandled draft event: {event!r}")


def ready_to_save(state: State) -> Optional[ReadyToSave]:
    if not isinstance(state, DraftActive) or not state.valid:
        return None
    draft = state.draft
    if draft.teacher is None or draft.lesson_type is None:
        return None
    return ReadyToSave(
        date=draft.date,
        room=draft.room,
        start=draft.start,
        end=draft.end,
        teacher=draft.teacher,
        lesson_type=draft.lesson_type,
        note=(draft.note or "").strip() or None,
    )


# ---------- driver ----------


class DraftEditor:
    """Runs the draft state machine for one user against a BookingStore."""

    def __init__(self, store: BookingStore, date: str, room: str):
        self.store = store
        self.state: State = Idle(date=date, room=room)
        self.last_error: Optional[BookingError] = None
        store.add_listener(lambda _state: self.refresh())

    @property
    def can_save(self) -> bool:
        return ready_to_save(self.state) is not None

    def refresh(self) -> None:
        """Re-check the draft after the bookings around it changed."""
        self.state = revalidate(self.state, self.store.items)

    def dispatch(self, event: Event) -> State:
        if isinstance(event, Save):
            raise TypeError("Save is asynchronous; use handle() or save()")
        self.state = transition(self.state, event, self.store.items)
        return self.state

    async def save(self) -> BookingRead:
        ready = ready_to_save(self.state)
        if ready is None:
            raise ValidationFailure("Draft is not ready to save")

        held = replace(self.state, tap=None, drag=None)
        self.state = Idle(date=ready.date, room=ready.room)
        self.last_error = None
        try:
            stored = await self.store.create(ready.to_booking())
        except (ConstraintViolation, TransportFailure) as exc:
            self.last_error = exc
            logger.warning(
                "Saving %s %s-%s failed: %s",
                ready.room,
                format_minutes(ready.start),
                format_minutes(ready.end),
                exc,
            )
            # Bring the draft back unless the user touched the surface meanwhile
            if self.state == Idle(date=held.date, room=held.room):
                self.state = revalidate(held, self.store.items)
            raise
        return stored

    async def handle(self, event: Event) -> None:
        try:
            if isinstance(event, Save):
                await self.save()
            else:
                self.dispatch(event)
        except BookingError as exc:
            self.last_error = exc

    async def run(self, events: asyncio.Queue) -> None:
        """Handle queued events in order until a None is received."""
        while True:
            event = await events.get()
            if event is None:
                break
            await self.handle(event)
