# db.py
import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from tweeshirt.settings import settings

# --- Configuration & Setup ---
logger = logging.getLogger(__name__)
DATABASE_URL = settings.DATABASE_URL

# Hosted Postgres URLs come without the async driver; SQLite is the dev default.
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
    logger.info("✅ Connecting to PostgreSQL database.")
elif DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
    logger.info("✅ Connecting to PostgreSQL database.")
else:
    logger.info("✅ Using local SQLite database for development.")


# --- SQLAlchemy Engine & Session ---

engine_options = {"echo": False}
if not DATABASE_URL.startswith("sqlite"):
    # `pool_recycle` keeps idle connections from being dropped by the server.
    engine_options.update(
        pool_size=10,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=1800,
    )

engine = create_async_engine(DATABASE_URL, **engine_options)

# `expire_on_commit=False` lets handlers read rows after the commit.
async_session_maker = sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Base class for declarative models in `models.py`.
Base = declarative_base()


# --- FastAPI Dependency ---

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session to each request.

    Uses an `async with` block to ensure the session is always
    closed correctly, even if an error occurs.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
