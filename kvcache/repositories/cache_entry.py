"""Durable store for cache entries."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete as sa_delete
from sqlalchemy import exists as sa_exists
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kvcache.core.repository.base import BaseRepository
from kvcache.core.result import DurableStoreError, Result, success
from kvcache.core.time_utils import ensure_aware_utc, utc_now
from kvcache.domain.models import CacheEntry

_NATIVE_UPSERT = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class CacheEntryRepository(BaseRepository[CacheEntry]):
    """
    Repository keyed by the unique cache key rather than the surrogate id.

    Writes go through ``upsert`` only, so a key never has more than one row.
    On SQLite and PostgreSQL the upsert is a single
    ``INSERT ... ON CONFLICT (cache_key) DO UPDATE`` statement, which keeps
    concurrent writers of the same key from tripping the unique constraint;
    ``created_at`` is written on insert and left alone on conflict.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(CacheEntry, session)

    async def find_by_key(self, key: str) -> Result[Optional[CacheEntry], DurableStoreError]:
        try:
            stmt = select(CacheEntry).where(CacheEntry.key == key)
            result = await self.session.execute(stmt)
            return success(result.scalar_one_or_none())
        except SQLAlchemyError as e:
            return self._failure("find_by_key", e)

    async def upsert(
        self,
        key: str,
        value: Optional[str],
        expires_at: Optional[datetime],
    ) -> Result[None, DurableStoreError]:
        """Insert the entry or replace value and expiry of the existing one."""
        if expires_at is not None:
            expires_at = ensure_aware_utc(expires_at)
        try:
            insert_factory = _NATIVE_UPSERT.get(self.dialect_name)
            if insert_factory is None:
                await self._upsert_via_orm(key, value, expires_at)
                return success(None)

            table = CacheEntry.__table__
            stmt = insert_factory(table).values(
                cache_key=key,
                value=value,
                expires_at=expires_at,
                created_at=utc_now(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.cache_key],
                set_={
                    "value": stmt.excluded.value,
                    "expires_at": stmt.excluded.expires_at,
                },
            )
            await self.session.execute(stmt)
            return success(None)
        except SQLAlchemyError as e:
            return self._failure("upsert", e)

    async def _upsert_via_orm(
        self, key: str, value: Optional[str], expires_at: Optional[datetime]
    ) -> None:
        stmt = select(CacheEntry).where(CacheEntry.key == key).with_for_update()
        entry = (await self.session.execute(stmt)).scalar_one_or_none()
        if entry is None:
            entry = CacheEntry(key=key)
            self.session.add(entry)
        entry.value = value
        entry.expires_at = expires_at
        await self.session.flush()

    async def delete_by_key(
        self,
        key: str,
        *,
        expired_before: Optional[datetime] = None,
    ) -> Result[bool, DurableStoreError]:
        """
        Delete the entry; ``Success(False)`` when there was nothing to delete.

        With ``expired_before`` the row is only removed while it is still
        expired at that moment, so a lazy delete can never take out a value
        that a concurrent writer has just refreshed.
        """
        try:
            table = CacheEntry.__table__
            stmt = sa_delete(table).where(table.c.cache_key == key)
            if expired_before is not None:
                stmt = stmt.where(
                    table.c.expires_at.is_not(None),
                    table.c.expires_at < ensure_aware_utc(expired_before),
                )
            result = await self.session.execute(stmt)
            return success(result.rowcount > 0)
        except SQLAlchemyError as e:
            return self._failure("delete_by_key", e)

    async def delete_expired_before(self, moment: datetime) -> Result[int, DurableStoreError]:
        """Bulk delete entries whose expiry lies strictly before ``moment``."""
        try:
            table = CacheEntry.__table__
            stmt = sa_delete(table).where(
                table.c.expires_at.is_not(None),
                table.c.expires_at < ensure_aware_utc(moment),
            )
            result = await self.session.execute(stmt)
            return success(max(result.rowcount or 0, 0))
        except SQLAlchemyError as e:
            return self._failure("delete_expired_before", e)

    async def count_expired_before(self, moment: datetime) -> Result[int, DurableStoreError]:
        """How many rows ``delete_expired_before(moment)`` would remove."""
        try:
            stmt = select(func.count()).select_from(CacheEntry).where(
                CacheEntry.expires_at.is_not(None),
                CacheEntry.expires_at < ensure_aware_utc(moment),
            )
            result = await self.session.execute(stmt)
            return success(result.scalar() or 0)
        except SQLAlchemyError as e:
            return self._failure("count_expired_before", e)

    async def exists_by_key(self, key: str) -> Result[bool, DurableStoreError]:
        try:
            stmt = select(sa_exists().where(CacheEntry.key == key))
            result = await self.session.execute(stmt)
            return success(bool(result.scalar()))
        except SQLAlchemyError as e:
            return self._failure("exists_by_key", e)
