import dataclasses

import httpx
import pytest

from kvcache.apps.api.main import create_app
from kvcache.core.bootstrap import CacheRuntime


@pytest.fixture
async def runtime(test_settings, fast_store):
    runtime = CacheRuntime(test_settings, fast_store=fast_store)
    await runtime.start()
    yield runtime
    await runtime.shutdown()


@pytest.fixture
async def client(test_settings, runtime):
    app = create_app(test_settings, runtime=runtime)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_unknown_key_is_404(client):
    response = await client.get("/api/cache/missing")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_put_then_get(client, fake_redis):
    response = await client.post("/api/cache/greeting", json={"value": "hello", "ttl": 60})
    assert response.status_code == 200
    assert response.json() == {"message": "Cache entry created", "key": "greeting"}

    response = await client.get("/api/cache/greeting")
    assert response.json() == {"key": "greeting", "value": "hello"}
    assert await fake_redis.get("ttl:greeting") == "hello"


@pytest.mark.asyncio
async def test_permanent_put(client):
    await client.post("/api/cache/config", json={"value": "v1"})

    response = await client.get("/api/cache/config/exists")
    assert response.json() == {"exists": True}


@pytest.mark.asyncio
async def test_zero_ttl_is_never_visible(client):
    await client.post("/api/cache/flash", json={"value": "x", "ttl": 0})

    assert (await client.get("/api/cache/flash")).status_code == 404
    assert (await client.get("/api/cache/flash/exists")).json() == {"exists": False}


@pytest.mark.asyncio
async def test_negative_ttl_is_rejected(client):
    response = await client.post("/api/cache/k", json={"value": "x", "ttl": -1})

    assert response.status_code == 422
    assert (await client.get("/api/cache/k/exists")).json() == {"exists": False}


@pytest.mark.asyncio
async def test_oversized_key_is_rejected(client):
    response = await client.post(f"/api/cache/{'k' * 600}", json={"value": "x"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_delete_is_idempotent(client):
    await client.post("/api/cache/k", json={"value": "x", "ttl": 60})

    for _ in range(2):
        response = await client.delete("/api/cache/k")
        assert response.status_code == 200
        assert response.json() == {"message": "Cache entry deleted", "key": "k"}

    assert (await client.get("/api/cache/k")).status_code == 404


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "database": "ok", "fast_store": "ok"}


@pytest.mark.asyncio
async def test_metrics_exposition(client):
    await client.get("/api/cache/missing")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "kvcache_lookups_total" in response.text


@pytest.mark.asyncio
async def test_metrics_can_be_disabled(test_settings, runtime):
    settings = dataclasses.replace(test_settings, metrics_enabled=False)
    app = create_app(settings, runtime=runtime)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        assert (await client.get("/metrics")).status_code == 404


@pytest.mark.asyncio
async def test_durable_store_outage_maps_to_503(client, runtime):
    async with runtime.engine.begin() as conn:
        await conn.exec_driver_sql("DROP TABLE cache_entries")

    response = await client.get("/api/cache/k")

    assert response.status_code == 503
    assert response.json() == {"detail": "Cache storage unavailable"}


@pytest.mark.asyncio
async def test_not_started_runtime_is_503(test_settings):
    app = create_app(test_settings, runtime=CacheRuntime(test_settings))
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/cache/k")

    assert response.status_code == 503
