"""Change notifications for the bookings table.

Every committed insert, update and delete is published to a ``ChangeFeed``
as a typed event. Subscribers (the WebSocket endpoint, in-process stores)
each get their own queue and consume events one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from .models import BookingRead

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Inserted:
    booking: BookingRead


@dataclass(frozen=True)
class Updated:
    booking: BookingRead


@dataclass(frozen=True)
class Deleted:
    booking_id: uuid.UUID


ChangeEvent = Union[Inserted, Updated, Deleted]

_CLOSED = object()


def _row(booking: BookingRead) -> Dict[str, Any]:
    # Field names as stored, so lesson_type goes out as "type"
    return booking.model_dump(mode="json", by_alias=True)


def to_message(event: ChangeEvent) -> Dict[str, Any]:
    """Encode an event the way Postgres change payloads look: event/new/old."""
    if isinstance(event, Inserted):
        return {"event": "INSERT", "new": _row(event.booking), "old": None}
    if isinstance(event, Updated):
        return {"event": "UPDATE", "new": _row(event.booking), "old": None}
    if isinstance(event, Deleted):
        return {"event": "DELETE", "new": None, "old": {"id": str(event.booking_id)}}
    raise TypeError(f"Not a change event: {event!r}")


def from_message(message: Dict[str, Any]) -> ChangeEvent:
    kind = message.get("event")
    if kind == "INSERT":
        return Inserted(BookingRead.model_validate(message["new"]))
    if kind == "UPDATE":
        return Updated(BookingRead.model_validate(message["new"]))
    if kind == "DELETE":
        return Deleted(uuid.UUID(str(message["old"]["id"])))
    raise ValueError(f"Unknown change event {kind!r}")


class Subscription:
    """One subscriber's inbound queue. Iterate it to receive events."""

    def __init__(self, feed: ChangeFeed):
        self._feed = feed
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _deliver(self, item) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep later get() calls from blocking forever
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def drain(self) -> List[ChangeEvent]:
        """Everything queued so far, without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            events.append(item)
        return events

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class ChangeFeed:
    def __init__(self):
        self._subscribers: Set[Subscription] = set()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscribers.add(subscription)
        logger.debug("Change feed subscriber added (%d total)", len(self._subscribers))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers):
            subscription._deliver(event)
