import logging
import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from . import models  # noqa: F401  (registers the bookings table)

logger = logging.getLogger(__name__)

# Load environment variables from .env file
load_dotenv()

engine: Optional[AsyncEngine] = None
async_session: Optional[sessionmaker] = None


def get_database_url() -> str:
    url = os.environ.get("DATABASE_URL")
    # Fail fast rather than silently booking into nowhere
    if not url:
        raise ValueError("DATABASE_URL is not set. Please check your .env file.")
    return url


def configure(url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine and session factory used by the service."""
    global engine, async_session
    engine = create_async_engine(url or get_database_url(), echo=False, future=True)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info("Database configured for dialect %s", engine.dialect.name)
    return engine


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    target = target or engine
    if target is None:
        raise RuntimeError("Database is not configured; call configure() first")
    async with target.begin() as conn:
        if conn.dialect.name == "postgresql":
            # Needed for "date WITH =" inside the gist exclusion constraint
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


async def dispose() -> None:
    global engine, async_session
    if engine is not None:
        await engine.dispose()
    engine = None
    async_session = None

