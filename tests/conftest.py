import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from roombook import database
from roombook.changes import ChangeFeed
from roombook.repository import BookingRepository


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    await database.init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def repository(engine, feed):
    session_factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return BookingRepository(session_factory, feed)
