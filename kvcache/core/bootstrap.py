"""Process wiring: builds the cache engine and owns the lifecycle of its resources."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from kvcache.core.cache import CacheConfig, CacheKeys, FastStore
from kvcache.core.db import (
    create_engine_from_settings,
    create_schema,
    create_session_factory,
    session_scope,
)
from kvcache.core.microcache import LocalCache
from kvcache.core.settings import Settings, get_settings
from kvcache.domain.cache_service import CacheService
from kvcache.domain.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


class CacheRuntime:
    """
    Everything a running cache service needs, started and stopped together.

    Example:
        runtime = CacheRuntime()
        await runtime.start()
        try:
            await runtime.service.put("greeting", "hello", ttl=60)
        finally:
            await runtime.shutdown()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        fast_store: Optional[FastStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._injected_fast_store = fast_store
        self._lock = asyncio.Lock()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.fast_store: Optional[FastStore] = None
        self._service: Optional[CacheService] = None
        self.sweeper: Optional[ExpirationSweeper] = None

    @property
    def service(self) -> CacheService:
        if self._service is None:
            raise RuntimeError("Cache runtime not started. Call start() first.")
        return self._service

    @property
    def started(self) -> bool:
        return self._service is not None

    async def start(self) -> None:
        async with self._lock:
            if self._service is not None:
                return

            try:
                await self._start_components()
            except Exception:
                logger.exception("Cache runtime failed to start")
                await self._release()
                raise
            logger.info("Cache service ready")

    async def _start_components(self) -> None:
        settings = self.settings
        self.engine = create_engine_from_settings(settings)
        self.session_factory = create_session_factory(self.engine)
        logger.info("Ensuring cache schema")
        await create_schema(self.engine)

        self.fast_store = await self._connect_fast_store()

        self._service = CacheService(
            self.session_factory,
            fast_store=self.fast_store,
            local_cache=LocalCache(max_items=settings.local_cache_size),
            keys=CacheKeys(settings.shadow_key_prefix),
        )

        if settings.sweep_enabled:
            self.sweeper = ExpirationSweeper(
                self._service,
                interval_seconds=settings.sweep_interval_seconds,
            )
            self.sweeper.start()
        else:
            logger.info("Expiration sweep disabled (SWEEP_ENABLED=0)")

    async def _connect_fast_store(self) -> Optional[FastStore]:
        settings = self.settings
        if self._injected_fast_store is not None:
            await self._injected_fast_store.connect()
            return self._injected_fast_store

        if not settings.redis_url:
            logger.info("Fast store disabled (no REDIS_URL)")
            return None

        store = FastStore(
            CacheConfig(url=settings.redis_url, operation_timeout=settings.fast_store_timeout)
        )
        try:
            await store.connect()
        except (RedisError, OSError) as e:
            await store.disconnect()
            if settings.environment == "production":
                raise RuntimeError(f"Failed to connect fast store in production: {e}") from e
            logger.warning("Fast store unavailable, serving from the database only: %s", e)
            return None
        return store

    async def shutdown(self) -> None:
        async with self._lock:
            await self._release()
            logger.info("Cache service stopped")

    async def _release(self) -> None:
        """Stop whatever has been started so far; safe on a half-built runtime."""
        if self.sweeper is not None:
            await self.sweeper.shutdown()
            self.sweeper = None
        if self.fast_store is not None:
            await self.fast_store.disconnect()
            self.fast_store = None
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
        self.session_factory = None
        self._service = None

    async def health(self) -> Dict[str, Any]:
        """Report reachability of both stores; only the durable store decides ``ok``."""
        report: Dict[str, Any] = {"ok": False, "database": "down", "fast_store": "disabled"}
        if self.session_factory is None:
            return report

        try:
            async with session_scope(self.session_factory) as session:
                await session.execute(text("SELECT 1"))
            report["database"] = "ok"
        except SQLAlchemyError:
            logger.warning("Database health check failed", exc_info=True)

        if self.fast_store is not None:
            result = await self.fast_store.ping()
            report["fast_store"] = "ok" if result.is_success() else "degraded"

        report["ok"] = report["database"] == "ok"
        return report


__all__ = ["CacheRuntime"]
