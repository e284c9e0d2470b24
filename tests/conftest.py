import dataclasses
import os
from datetime import datetime, timedelta, timezone

import pytest
from fakeredis import aioredis as fakeredis_aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine

TEST_ENV = {
    "ENVIRONMENT": "test",
    "REDIS_URL": "",
    "SWEEP_ENABLED": "0",
    "LOG_LEVEL": "DEBUG",
    "LOG_FILE": "",
    "METRICS_ENABLED": "1",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value

from kvcache.core.cache import CacheConfig, CacheKeys, FastStore
from kvcache.core.db import create_schema, create_session_factory
from kvcache.core.microcache import LocalCache
from kvcache.core.settings import get_settings
from kvcache.domain.cache_service import CacheService


class ManualClock:
    """UTC clock that only moves when told to, plus one microsecond per reading."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(microseconds=1)
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FailingRedis:
    """Redis double whose every command fails like a dead server."""

    def __init__(self):
        self.calls: list[str] = []

    async def _fail(self, name: str):
        self.calls.append(name)
        raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def get(self, key):
        await self._fail("get")

    async def set(self, key, value, px=None):
        await self._fail("set")

    async def delete(self, *keys):
        await self._fail("delete")

    async def ping(self):
        await self._fail("ping")

    async def aclose(self):
        return None


@pytest.fixture(scope="session", autouse=True)
def _set_test_env():
    """Force deterministic env for tests and reset cached settings."""

    for key, value in TEST_ENV.items():
        os.environ[key] = value

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"


@pytest.fixture
def test_settings(tmp_path, database_url):
    return dataclasses.replace(
        get_settings(),
        data_dir=tmp_path,
        database_url=database_url,
        redis_url="",
        sweep_enabled=False,
        local_cache_size=16,
    )


@pytest.fixture
async def engine(database_url):
    engine = create_async_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def fake_redis():
    client = fakeredis_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def fast_store(fake_redis):
    return FastStore(CacheConfig(operation_timeout=1.0), client=fake_redis)


@pytest.fixture
def failing_fast_store():
    return FastStore(CacheConfig(operation_timeout=1.0), client=FailingRedis())


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def local_cache():
    return LocalCache(max_items=16)


@pytest.fixture
def service(session_factory, fast_store, local_cache, clock):
    return CacheService(
        session_factory,
        fast_store=fast_store,
        local_cache=local_cache,
        keys=CacheKeys("ttl:"),
        clock=clock,
    )
