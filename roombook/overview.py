"""Per-room occupancy listing and the confirm-before-delete flow."""

import logging
import uuid
from typing import Dict, Iterable, List, Optional

from .conflicts import same_scope
from .constants import Room
from .models import BookingRead
from .store import BookingStore

logger = logging.getLogger(__name__)


def day_overview(bookings: Iterable[BookingRead], date: str) -> Dict[str, List[BookingRead]]:
    # Every room is listed, booked or not
    bookings = list(bookings)
    return {room.value: same_scope(bookings, date, room.value) for room in Room}


class DeleteGuard:
    """Two-step delete: the first request arms, the second confirms."""

    def __init__(self, store: BookingStore):
        self.store = store
        self.armed: Optional[uuid.UUID] = None

    def disarm(self) -> None:
        self.armed = None

    async def request(self, booking_id: uuid.UUID) -> bool:
        """Returns True once the booking has actually been deleted."""
        if self.armed != booking_id:
            self.armed = booking_id
            return False
        self.armed = None
        await self.store.remove(booking_id)
        logger.info("Deleted booking %s after confirmation", booking_id)
        return True
