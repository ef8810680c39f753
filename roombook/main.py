import asyncio
import contextlib
import logging
import os
import uuid
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

from . import database
from .changes import ChangeFeed, to_message
from .errors import BookingNotFound, ConstraintViolation, TransportFailure, ValidationFailure
from .logging_setup import setup_logging
from .models import BookingCreate, BookingRead, BookingTimes
from .overview import day_overview
from .repository import BookingRepository

logger = logging.getLogger(__name__)

app = FastAPI(title="Room Booking System")

feed = ChangeFeed()
repository: Optional[BookingRepository] = None


# Pydantic Schemas for Request/Response
class RoomSchedule(BaseModel):
    room: str
    bookings: List[BookingRead]


@app.on_event("startup")
async def on_startup():
    global repository
    setup_logging()
    database.configure()
    await database.init_db()
    repository = BookingRepository(database.async_session, feed)


@app.on_event("shutdown")
async def on_shutdown():
    await database.dispose()


def get_repository() -> BookingRepository:
    """Dependency provider for the booking repository"""
    if repository is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage not ready")
    return repository


# --- GET /bookings ---
@app.get("/bookings", response_model=List[BookingRead])
async def list_bookings(
    target_date: date = Query(alias="date"),
    repo: BookingRepository = Depends(get_repository),
):
    try:
        return await repo.list_for_date(target_date.isoformat())
    except TransportFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# --- GET /overview ---
@app.get("/overview", response_model=List[RoomSchedule])
async def get_overview(
    target_date: date = Query(alias="date"),
    repo: BookingRepository = Depends(get_repository),
):
    # Single query for the day, then grouped per room
    try:
        bookings = await repo.list_for_date(target_date.isoformat())
    except TransportFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))

    grouped = day_overview(bookings, target_date.isoformat())
    return [RoomSchedule(room=room, bookings=items) for room, items in grouped.items()]


# --- POST /bookings ---
@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    repo: BookingRepository = Depends(get_repository),
):
    try:
        return await repo.insert(booking_data)
    except ValidationFailure as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ConstraintViolation as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except TransportFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# --- PUT /bookings/{booking_id} ---
@app.put("/bookings/{booking_id}", response_model=BookingRead)
async def replace_booking(
    booking_id: uuid.UUID,
    times: BookingTimes,
    repo: BookingRepository = Depends(get_repository),
):
    try:
        return await repo.replace(booking_id, times)
    except ValidationFailure as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except BookingNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except ConstraintViolation as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except TransportFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# --- DELETE /bookings/{booking_id} ---
@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: uuid.UUID,
    repo: BookingRepository = Depends(get_repository),
):
    try:
        await repo.delete(booking_id)
    except BookingNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except TransportFailure as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))


# --- WS /bookings/changes ---
@app.websocket("/bookings/changes")
async def booking_changes(websocket: WebSocket):
    # Subscribe before accepting so nothing committed after the handshake is missed
    subscription = feed.subscribe()
    await websocket.accept()

    async def forward():
        async for event in subscription:
            await websocket.send_json(to_message(event))

    forwarder = asyncio.create_task(forward())
    try:
        # Clients only listen; this returns when they go away
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Change stream client disconnected")
    finally:
        subscription.close()
        forwarder.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
            await forwarder


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Fine for a studio LAN; restrict when exposed publicly
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
