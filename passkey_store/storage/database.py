"""Async database engine and user store lifecycle."""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import SQLModel

from passkey_store.config.settings import Settings, get_settings
from passkey_store.storage.repositories.users import UserStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def engine_options(settings: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine``; SQLite gets no pool sizing."""
    options: dict[str, Any] = {"echo": settings.debug}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=settings.db_pool_recycle,
        )
    return options


@lru_cache
def get_engine() -> AsyncEngine:
    """Return a cached async database engine (singleton per process)."""
    settings = get_settings()
    return create_async_engine(settings.database_url, **engine_options(settings))


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (for dev/testing only; use Alembic in production)."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def user_store_session(engine: AsyncEngine | None = None) -> AsyncIterator[UserStore]:
    """Yield an initialized ``UserStore``.

    When no engine is passed one is built from settings and disposed on exit;
    a caller-supplied engine is left open.
    """
    owned = engine is None
    if engine is None:
        settings = get_settings()
        engine = create_async_engine(settings.database_url, **engine_options(settings))
    store = UserStore(engine)
    try:
        await store.initialize()
        yield store
    finally:
        if owned:
            await engine.dispose()
