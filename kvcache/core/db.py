from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from kvcache.core.settings import Settings
from kvcache.domain.base import Base

logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = ("sqlite+aiosqlite", "postgresql+asyncpg")


def _preflight_database_backend(url: str) -> str:
    try:
        parsed = make_url(url)
    except ArgumentError as exc:  # pragma: no cover - configuration guard
        raise RuntimeError(f"Invalid DATABASE_URL: {exc}") from exc

    driver = (parsed.drivername or "").lower()
    masked_url = parsed.render_as_string(hide_password=True)
    logger.info("Database dialect: %s (%s)", driver or "unknown", masked_url)

    if driver not in SUPPORTED_DRIVERS:
        raise RuntimeError(
            f"Unsupported database driver: {driver}. "
            f"Use one of: {', '.join(SUPPORTED_DRIVERS)}"
        )
    return driver


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    driver = _preflight_database_backend(settings.database_url)

    engine_kwargs: dict[str, Any] = {
        "echo": settings.sql_echo,
        "pool_pre_ping": True,
    }
    # SQLite runs on a single-file pool; sizing options only apply to server databases.
    if not driver.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )

    return create_async_engine(settings.database_url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create missing tables for every mapped model."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    session = session_factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


__all__ = [
    "SUPPORTED_DRIVERS",
    "create_engine_from_settings",
    "create_schema",
    "create_session_factory",
    "session_scope",
]
