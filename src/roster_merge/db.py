"""Database engine and session management for the SQL analysis store."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from roster_merge.config import settings
from roster_merge.models import Base


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine (default: settings.database_url)."""
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.database_echo,
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
