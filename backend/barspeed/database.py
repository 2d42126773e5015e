"""
Engines and session factories for the analysis history database.

The API talks to the database through an async engine; the Celery worker
runs the tracking pipeline synchronously and gets its own sync engine on
the same database.
"""

from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker
from sqlalchemy import create_engine

from barspeed.config import get_settings


settings = get_settings()


def engine_options(url: str) -> Dict[str, Any]:
    """Keyword arguments for create_engine/create_async_engine on `url`."""
    options: Dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # Worker threads share the file; SQLite pools take no size arguments
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=10, max_overflow=20)
    return options


async_engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

# expire_on_commit=False: endpoints serialize sessions after committing
AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)

sync_engine = create_engine(settings.database_url_sync, **engine_options(settings.database_url_sync))

SyncSessionLocal = sessionmaker(sync_engine, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
