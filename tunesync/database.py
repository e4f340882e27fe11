"""
Async SQLAlchemy engine + session factory for the durable store.

The engine is created once per process and reused by the API request path
and by the sync worker. Tests build their own engine with `create_engine()`
and hand the resulting session factory to the stores.
"""
import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from tunesync.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def create_engine(url: str | None = None) -> AsyncEngine:
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)
    return create_async_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        echo=False,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine()
AsyncSessionLocal = create_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all tables if they don't exist (idempotent)."""
    # Imported for its side effect of registering the tables on Base.metadata
    from tunesync import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")
