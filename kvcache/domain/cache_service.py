"""Cache engine keeping the durable store and the fast store coherent.

The durable store is authoritative; the fast store is a best-effort
accelerator holding shadow copies of TTL-bearing entries. Writes and deletes
hit the durable store first and the fast store second, so a crash between
the two leaves the durable store correct and the shadow at worst stale for
no longer than its own TTL, which never exceeds the durable expiry.

No lock spans the two stores. Concurrent writers of one key are ordered by
the durable store (last writer wins).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kvcache.core.cache import CacheKeys
from kvcache.core.metrics import record_lookup
from kvcache.core.microcache import LocalCache
from kvcache.core.repository.protocols import IFastStore, IUnitOfWork
from kvcache.core.result import FastStoreError, InvalidCacheRequest
from kvcache.core.time_utils import Clock, utc_now
from kvcache.core.uow import UnitOfWork
from kvcache.domain.models import MAX_KEY_LENGTH

logger = logging.getLogger(__name__)

TTL = Union[int, float, timedelta]

_ONE_MS = timedelta(milliseconds=1)


class CacheService:
    """Read, write, delete and expire cache entries across both stores."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        fast_store: Optional[IFastStore] = None,
        local_cache: Optional[LocalCache] = None,
        keys: Optional[CacheKeys] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._fast_store = fast_store
        self._local = local_cache if local_cache is not None else LocalCache(max_items=0)
        self._keys = keys or CacheKeys()
        self._clock = clock

    @property
    def fast_store(self) -> Optional[IFastStore]:
        return self._fast_store

    def _unit_of_work(self) -> IUnitOfWork:
        return UnitOfWork(self._session_factory)

    async def put(self, key: str, value: Optional[str], ttl: Optional[TTL] = None) -> None:
        """
        Store ``value`` under ``key``.

        Without ``ttl`` the entry is permanent. With ``ttl`` it expires at
        ``now + ttl``; zero is accepted and yields an entry that is already
        expired for every later read.
        """
        _validate_key(key)
        now = self._clock()
        expires_at = None
        if ttl is not None:
            try:
                expires_at = now + _ttl_delta(ttl)
            except OverflowError as exc:
                raise InvalidCacheRequest("ttl", "is too large") from exc

        async with self._unit_of_work() as uow:
            (await uow.entries.upsert(key, value, expires_at)).unwrap()
            await uow.commit()

        if expires_at is None:
            self._local.put(key, value)
            # A shadow left by an earlier TTL write must not outlive this overwrite.
            await self._drop_shadow(key, reason="overwrite")
            logger.debug("Cached entry with key: %s (no expiration)", key)
        else:
            self._local.evict(key)
            await self._write_shadow(key, value, expires_at)
            logger.debug("Cached entry with key: %s until %s", key, expires_at.isoformat())

    async def get(self, key: str) -> Optional[str]:
        """
        Return the live value for ``key`` or ``None``.

        Lookup order: fast store shadow, local cache, durable store. An
        expired durable entry is deleted on the spot (lazy expiration).
        """
        _validate_key(key)

        shadow = await self._read_shadow(key)
        if shadow is not None:
            record_lookup("fast")
            logger.debug("Cache hit in fast store for key: %s", key)
            return shadow

        hit, local_value = self._local.lookup(key)
        if hit:
            record_lookup("local")
            return local_value

        token = self._local.token(key)
        async with self._unit_of_work() as uow:
            entry = (await uow.entries.find_by_key(key)).unwrap()
            if entry is None:
                record_lookup("miss")
                return None

            now = self._clock()
            if entry.is_expired(now):
                removed = (
                    await uow.entries.delete_by_key(key, expired_before=now)
                ).unwrap()
                await uow.commit()
                record_lookup("expired")
                if removed:
                    logger.debug("Lazily expired entry with key: %s", key)
                    self._local.evict(key)
                    await self._drop_shadow(key, reason="lazy expiry")
                return None

            value = entry.value
            permanent = entry.is_permanent

        if permanent:
            self._local.fill(token, value)
        record_lookup("durable")
        logger.debug("Retrieved value from database for key: %s", key)
        return value

    async def delete(self, key: str) -> None:
        """Remove ``key`` everywhere. Deleting an absent key is a no-op."""
        _validate_key(key)

        async with self._unit_of_work() as uow:
            (await uow.entries.delete_by_key(key)).unwrap()
            await uow.commit()

        self._local.evict(key)
        await self._drop_shadow(key, reason="delete")
        logger.debug("Deleted cache entry with key: %s", key)

    async def exists(self, key: str) -> bool:
        """True iff a durable entry is present and not expired. Has no side effects."""
        _validate_key(key)

        async with self._unit_of_work() as uow:
            entry = (await uow.entries.find_by_key(key)).unwrap()
        return entry is not None and not entry.is_expired(self._clock())

    async def sweep_expired(self) -> int:
        """Delete every durable entry whose expiry lies before now; return the count."""
        now = self._clock()
        async with self._unit_of_work() as uow:
            removed = (await uow.entries.delete_expired_before(now)).unwrap()
            await uow.commit()
        return removed

    async def _read_shadow(self, key: str) -> Optional[str]:
        if self._fast_store is None:
            return None
        result = await self._fast_store.get(self._keys.shadow(key))
        if result.is_failure():
            self._log_degraded(result.error)
            return None
        return result.unwrap()

    async def _write_shadow(self, key: str, value: Optional[str], expires_at: datetime) -> None:
        if self._fast_store is None:
            return
        remaining_ms = (expires_at - self._clock()) // _ONE_MS
        if remaining_ms <= 0 or value is None:
            await self._drop_shadow(key, reason="no shadow")
            return
        result = await self._fast_store.set_with_ttl(self._keys.shadow(key), value, remaining_ms)
        if result.is_failure():
            self._log_degraded(result.error)
            # Do not leave a shadow of the previous write behind.
            await self._drop_shadow(key, reason="failed shadow write")

    async def _drop_shadow(self, key: str, *, reason: str) -> None:
        if self._fast_store is None:
            return
        result = await self._fast_store.delete(self._keys.shadow(key))
        if result.is_failure():
            self._log_degraded(result.error, reason=reason)

    @staticmethod
    def _log_degraded(error: FastStoreError, *, reason: Optional[str] = None) -> None:
        context = {"cache_operation": error.operation, "cache_key": error.key, "reason": reason}
        if reason:
            logger.warning("%s (%s); continuing without fast store", error, reason, extra=context)
        else:
            logger.warning("%s; continuing without fast store", error, extra=context)


def _validate_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise InvalidCacheRequest("key", "must be a non-empty string")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidCacheRequest("key", f"must be at most {MAX_KEY_LENGTH} characters")


def _ttl_delta(ttl: TTL) -> timedelta:
    if isinstance(ttl, timedelta):
        delta = ttl
    elif isinstance(ttl, (int, float)) and not isinstance(ttl, bool):
        try:
            delta = timedelta(seconds=ttl)
        except (OverflowError, ValueError) as exc:
            raise InvalidCacheRequest("ttl", f"is out of range (got: {ttl!r})") from exc
    else:
        raise InvalidCacheRequest("ttl", f"must be a number of seconds (got: {ttl!r})")
    if delta < timedelta(0):
        raise InvalidCacheRequest("ttl", "must not be negative")
    return delta


__all__ = ["CacheService", "TTL"]
