"""
Database engine and session factory for conversation persistence.

The engine targets Postgres through asyncpg unless DATABASE_URL points
somewhere else (tests use SQLite through aiosqlite). Pool sizing only
applies to server databases.
"""
import logging
from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from interpreter.config.constants import DB_POOL_MAX_OVERFLOW, DB_POOL_SIZE
from interpreter.config.settings import settings

logger = logging.getLogger(__name__)


def build_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"postgresql+asyncpg://{settings.DB_USER}:{settings.DB_PASSWORD}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


def engine_options(url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        options.update(pool_size=DB_POOL_SIZE, max_overflow=DB_POOL_MAX_OVERFLOW)
    return options


DATABASE_URL = build_database_url()

engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    """Declarative base of the conversation tables."""


async def get_db() -> AsyncIterator[AsyncSession]:
    """Request-scoped session for FastAPI endpoints."""
    async with AsyncSessionLocal() as session:
        yield session


async def init_db():
    """Create the conversation tables if they do not exist yet."""
    # registers the mapped classes on Base.metadata
    from interpreter.models import conversation  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"[Database] Tables ready on {engine.url.render_as_string(hide_password=True)}")


async def reset_db():
    """Drop every conversation table. All stored conversations are lost."""
    from interpreter.models import conversation  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.warning("[Database] Tables dropped")
