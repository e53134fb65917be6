"""Database module with async SQLAlchemy engine and session management."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from .settings import get_settings

settings = get_settings()

# SQLAlchemy base for models
Base = declarative_base()

# Engine creation is lazy on first connect, so importing this module never
# needs a reachable database.
async_engine = create_async_engine(
    settings.db_url,
    echo=settings.db_echo,
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_all() -> None:
    """Create all tables in the database."""
    # Import models so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose() -> None:
    """Release every pooled connection."""
    await async_engine.dispose()
