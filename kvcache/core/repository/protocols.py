"""
Protocols for the two stores the cache engine talks to.

The durable store is authoritative; the fast store is a best-effort
accelerator. Both report problems through ``Result`` instead of raising.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from kvcache.core.result import DurableStoreError, FastStoreError, Result
from kvcache.domain.models import CacheEntry


@runtime_checkable
class ICacheEntryRepository(Protocol):
    """Durable store contract."""

    async def find_by_key(self, key: str) -> Result[Optional[CacheEntry], DurableStoreError]:
        ...

    async def upsert(
        self, key: str, value: Optional[str], expires_at: Optional[datetime]
    ) -> Result[None, DurableStoreError]:
        ...

    async def delete_by_key(
        self, key: str, *, expired_before: Optional[datetime] = None
    ) -> Result[bool, DurableStoreError]:
        ...

    async def delete_expired_before(self, moment: datetime) -> Result[int, DurableStoreError]:
        ...

    async def count_expired_before(self, moment: datetime) -> Result[int, DurableStoreError]:
        ...

    async def count(self) -> Result[int, DurableStoreError]:
        ...

    async def exists_by_key(self, key: str) -> Result[bool, DurableStoreError]:
        ...


@runtime_checkable
class IFastStore(Protocol):
    """Fast store contract; ``Success(None)`` from ``get`` means a clean miss."""

    async def set_with_ttl(
        self, key: str, value: Optional[str], ttl_ms: int
    ) -> Result[bool, FastStoreError]:
        ...

    async def get(self, key: str) -> Result[Optional[str], FastStoreError]:
        ...

    async def delete(self, key: str) -> Result[bool, FastStoreError]:
        ...


@runtime_checkable
class IUnitOfWork(Protocol):
    """Transaction boundary around the durable store."""

    entries: ICacheEntryRepository

    async def __aenter__(self) -> IUnitOfWork:
        ...

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...
