"""Redis fast store holding shadow copies of TTL-bearing entries.

The fast store is never a source of truth. Every call:
- is bounded by ``operation_timeout`` seconds
- reports trouble as ``Failure(FastStoreError)`` instead of raising
- reports a clean miss as ``Success(None)``
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from redis.asyncio import Redis
from redis.exceptions import RedisError

from kvcache.core.metrics import record_fast_store_error
from kvcache.core.redis_factory import create_redis_client
from kvcache.core.result import FastStoreError, Result, failure, success

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheConfig:
    """Redis fast store configuration."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        operation_timeout: float = 0.25,
        max_connections: int = 50,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
    ):
        self.url = url
        self.operation_timeout = operation_timeout
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout


class FastStore:
    """
    Best-effort Redis store with per-call latency bounds.

    A client can be injected (tests pass a fakeredis instance); otherwise
    ``connect()`` builds one from the configured URL.
    """

    def __init__(self, config: CacheConfig, client: Optional[Redis] = None):
        self.config = config
        self._client: Optional[Redis] = client
        self._owns_client = client is None

    async def connect(self) -> None:
        """Create the client and verify the server answers."""
        if self._client is None:
            self._client = create_redis_client(
                self.config.url,
                component="fast_store",
                decode_responses=True,
                max_connections=self.config.max_connections,
                socket_timeout=self.config.socket_timeout,
                socket_connect_timeout=self.config.socket_connect_timeout,
            )
            self._owns_client = True
        await self._client.ping()
        logger.info("Redis fast store connected")

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        logger.info("Redis fast store disconnected")

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def _call(
        self,
        operation: str,
        key: str,
        func: Callable[[Redis], Awaitable[T]],
    ) -> Result[T, FastStoreError]:
        client = self._client
        if client is None:
            return self._failed(operation, key, "not connected")
        try:
            value = await asyncio.wait_for(func(client), timeout=self.config.operation_timeout)
        except asyncio.TimeoutError as e:
            return self._failed(
                operation, key, f"timed out after {self.config.operation_timeout}s", e
            )
        except (RedisError, OSError) as e:
            return self._failed(operation, key, str(e) or type(e).__name__, e)
        except Exception as e:
            # Decoding errors and other client surprises degrade the same way.
            return self._failed(operation, key, str(e) or type(e).__name__, e)
        return success(value)

    def _failed(
        self,
        operation: str,
        key: str,
        message: str,
        exc: Optional[BaseException] = None,
    ) -> Result[Any, FastStoreError]:
        record_fast_store_error(operation)
        return failure(
            FastStoreError(
                operation=operation,
                key=key,
                message=message,
                original_exception=exc,
            )
        )

    async def set_with_ttl(
        self, key: str, value: Optional[str], ttl_ms: int
    ) -> Result[bool, FastStoreError]:
        """
        Store ``value`` under ``key`` for ``ttl_ms`` milliseconds.

        Returns ``Success(False)`` without touching Redis when there is nothing
        to shadow (no lifetime left, or no value).
        """
        if ttl_ms <= 0 or value is None:
            return success(False)

        async def _set(client: Redis) -> bool:
            return bool(await client.set(key, value, px=ttl_ms))

        return await self._call("set", key, _set)

    async def get(self, key: str) -> Result[Optional[str], FastStoreError]:
        async def _get(client: Redis) -> Optional[str]:
            value = await client.get(key)
            if isinstance(value, bytes):
                return value.decode("utf-8")
            return value

        return await self._call("get", key, _get)

    async def delete(self, key: str) -> Result[bool, FastStoreError]:
        async def _delete(client: Redis) -> bool:
            return await client.delete(key) > 0

        return await self._call("delete", key, _delete)

    async def ping(self) -> Result[bool, FastStoreError]:
        async def _ping(client: Redis) -> bool:
            return bool(await client.ping())

        return await self._call("ping", "-", _ping)


class CacheKeys:
    """Fast store key layout."""

    def __init__(self, shadow_prefix: str = "ttl:"):
        self.shadow_prefix = shadow_prefix

    def shadow(self, key: str) -> str:
        return f"{self.shadow_prefix}{key}"


__all__ = ["CacheConfig", "CacheKeys", "FastStore"]
