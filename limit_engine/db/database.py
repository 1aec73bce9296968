"""Database connection and session management with async support."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)

from .models import Base


# Default database URL (SQLite for development)
DEFAULT_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///./data/limit_orders.db"

# Engines are cached per URL so several stores can share a process
_async_engines: dict[str, AsyncEngine] = {}
_async_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def get_async_engine(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> AsyncEngine:
    """Get or create asynchronous database engine."""
    engine = _async_engines.get(database_url)
    if engine is None:
        connect_args = {}
        if database_url.startswith("sqlite"):
            # Concurrent claims wait on the write lock instead of erroring.
            connect_args["timeout"] = 30
        engine = create_async_engine(
            database_url,
            echo=False,
            future=True,
            connect_args=connect_args,
        )
        _async_engines[database_url] = engine
    return engine


def get_async_session_factory(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> async_sessionmaker[AsyncSession]:
    """Get async session factory."""
    factory = _async_session_factories.get(database_url)
    if factory is None:
        engine = get_async_engine(database_url)
        factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        _async_session_factories[database_url] = factory
    return factory


@asynccontextmanager
async def get_session(
    database_url: str = DEFAULT_ASYNC_DATABASE_URL,
) -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session as a context manager.

    The session is one transaction: committed on clean exit, rolled back on
    any exception.
    """
    factory = get_async_session_factory(database_url)
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db_async(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
    """Initialize the database asynchronously by creating all tables."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    engine = get_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_async(database_url: str | None = None) -> None:
    """Dispose one engine, or all of them when no URL is given."""
    urls = [database_url] if database_url else list(_async_engines)
    for url in urls:
        engine = _async_engines.pop(url, None)
        _async_session_factories.pop(url, None)
        if engine is not None:
            await engine.dispose()


async def reset_engines() -> None:
    """Dispose every cached engine. Useful for testing."""
    await close_db_async()
