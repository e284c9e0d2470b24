"""
Unit of Work pattern implementation for transaction management.

Each cache operation is its own unit of work against the durable store:

    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert(key, value, expires_at)).unwrap()
        await uow.commit()

Leaving the block without committing rolls back; so does an exception.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kvcache.core.repository.protocols import ICacheEntryRepository
from kvcache.core.result import DurableStoreError
from kvcache.repositories.cache_entry import CacheEntryRepository

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Owns one session and the repositories bound to it."""

    entries: ICacheEntryRepository

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self._committed = False

    async def __aenter__(self) -> UnitOfWork:
        self._session = self._session_factory()
        self._committed = False
        self.entries = CacheEntryRepository(self._session)
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        try:
            if exc_type is not None:
                await self.rollback()
                logger.debug(
                    "Transaction rolled back due to %s: %s", exc_type.__name__, exc_val
                )
            elif not self._committed:
                await self.rollback()
        finally:
            if self._session is not None:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork is not active. Use 'async with UnitOfWork(...)'.")
        return self._session

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            logger.error("Commit failed", exc_info=True)
            raise DurableStoreError(
                operation="UnitOfWork.commit",
                message=str(e),
                original_exception=e,
            ) from e
        self._committed = True

    async def rollback(self) -> None:
        if self._session is None:
            return
        try:
            await self._session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed", exc_info=True)
