"""Local view of the bookings, kept in step with storage.

The view converges on the shared state through two inputs: the results of
this client's own writes, and the change events every client's writes
produce. Both go through ``apply_change``, which is pure and idempotent, so
duplicates and reordering between the two inputs do not matter. Deleted ids
are remembered so that a late insert or update cannot bring a booking back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Callable, FrozenSet, List, Optional, Protocol, Set, Tuple

from .changes import ChangeEvent, Deleted, Inserted, Subscription, Updated
from .conflicts import same_scope
from .errors import TransportFailure
from .models import BookingCreate, BookingRead, BookingTimes

logger = logging.getLogger(__name__)


class BookingBackend(Protocol):
    async def list_for_date(self, date: str) -> List[BookingRead]: ...

    async def insert(self, data: BookingCreate) -> BookingRead: ...

    async def replace(self, booking_id: uuid.UUID, times: BookingTimes) -> BookingRead: ...

    async def delete(self, booking_id: uuid.UUID) -> None: ...


@dataclass(frozen=True)
class StoreState:
    items: Tuple[BookingRead, ...] = ()
    deleted: FrozenSet[uuid.UUID] = frozenset()

    def ids(self) -> FrozenSet[uuid.UUID]:
        return frozenset(b.id for b in self.items)


def apply_change(state: StoreState, event: ChangeEvent) -> StoreState:
    if isinstance(event, Deleted):
        return StoreState(
            items=tuple(b for b in state.items if b.id != event.booking_id),
            deleted=state.deleted | {event.booking_id},
        )

    booking = event.booking
    if booking.id in state.deleted:
        return state

    if isinstance(event, Inserted):
        if booking.id in state.ids():
            return state
        return replace(state, items=state.items + (booking,))

    if isinstance(event, Updated):
        if booking.id not in state.ids():
            # The insert may still be on its way; an update carries the full row
            return replace(state, items=state.items + (booking,))
        return replace(state, items=tuple(booking if b.id == booking.id else b for b in state.items))

    raise TypeError(f"Not a change event: {event!r}")


def with_snapshot(state: StoreState, snapshot: List[BookingRead]) -> StoreState:
    return StoreState(
        items=tuple(b for b in snapshot if b.id not in state.deleted),
        deleted=state.deleted,
    )


class BookingStore:
    def __init__(self, backend: BookingBackend):
        self._backend = backend
        self.state = StoreState()
        self.date: Optional[str] = None
        self.loading = False
        self.error: Optional[str] = None
        self._generation = 0
        self._buffered: Optional[List[ChangeEvent]] = None
        self._writing: Set[uuid.UUID] = set()
        self._listeners: List[Callable[[StoreState], None]] = []

    @property
    def items(self) -> Tuple[BookingRead, ...]:
        return self.state.items

    def for_room(self, room: str) -> List[BookingRead]:
        """Bookings of ``room`` on the selected date, ordered by start."""
        if self.date is None:
            return []
        return same_scope(self.state.items, self.date, room)

    def add_listener(self, listener: Callable[[StoreState], None]) -> None:
        self._listeners.append(listener)

    def _set(self, state: StoreState) -> None:
        if state is self.state:
            return
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    async def load(self, date: str) -> bool:
        """Replace the view with the stored bookings for ``date``.

        Returns False when the fetch failed (see ``error``) or a later load
        superseded this one. The current view is kept in both cases.
        """
        self._generation += 1
        generation = self._generation
        self.date = date
        self.loading = True
        self.error = None
        self._buffered = []

        try:
            snapshot = await self._backend.list_for_date(date)
        except TransportFailure as exc:
            if generation == self._generation:
                self.loading = False
                self.error = str(exc)
                self._buffered = None
            logger.warning("Loading bookings for %s failed: %s", date, exc)
            return False

        if generation != self._generation:
            logger.debug("Discarding superseded load for %s", date)
            return False

        # Older deletes are already reflected in the snapshot. Tombstones are
        # kept only for ids this client is still writing.
        kept = StoreState(deleted=self.state.deleted & frozenset(self._writing))
        state = with_snapshot(kept, snapshot)
        # Events seen while the query was in flight may be newer than it
        for event in self._buffered:
            state = apply_change(state, event)
        self._buffered = None
        self.loading = False
        self._set(state)
        logger.debug("Loaded %d bookings for %s", len(snapshot), date)
        return True

    async def create(self, booking: BookingCreate) -> BookingRead:
        """Submit a new booking.

        Raises ConstraintViolation or TransportFailure on rejection; the view
        is left as it was and the caller decides what happens to its draft.
        """
        if booking.id is None:
            booking = booking.model_copy(update={"id": uuid.uuid4()})
        self._writing.add(booking.id)
        try:
            stored = await self._backend.insert(booking)
        finally:
            self._writing.discard(booking.id)
        self.apply(Inserted(stored))
        return stored

    async def replace(self, booking_id: uuid.UUID, start: int, end: int) -> BookingRead:
        self._writing.add(booking_id)
        try:
            stored = await self._backend.replace(booking_id, BookingTimes(start=start, end=end))
        finally:
            self._writing.discard(booking_id)
        self.apply(Updated(stored))
        return stored

    async def remove(self, booking_id: uuid.UUID) -> None:
        await self._backend.delete(booking_id)
        self.apply(Deleted(booking_id))

    def apply(self, event: ChangeEvent) -> None:
        """Fold one event into the view, whether it came from a write or the feed."""
        logger.debug("Applying %s", type(event).__name__)
        # A load in flight replays these onto its snapshot
        if self._buffered is not None:
            self._buffered.append(event)
        self._set(apply_change(self.state, event))

    async def run(self, subscription: Subscription) -> None:
        """Consume change events until the subscription is closed."""
        async for event in subscription:
            self.apply(event)
