"""Database engine and session factory."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from config import settings
from utils.logger import logger


def build_engine(url: str) -> AsyncEngine:
    """Create the async engine; connection pool sizing applies to server databases only."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        echo=False,  # True to debug SQL
        pool_size=20,
        max_overflow=10,
    )


engine = build_engine(settings.database_url)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(db_engine: AsyncEngine | None = None) -> None:
    """Connect and create tables."""
    db_engine = db_engine or engine
    try:
        from database.models import Base

        async with db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database connection established")
        logger.info("Database tables created/verified")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def close_db() -> None:
    """Dispose of database connections."""
    await engine.dispose()
    logger.info("Database connections closed")
