from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from kvcache.core.db import create_session_factory
from kvcache.core.repository import ICacheEntryRepository, IFastStore, IUnitOfWork
from kvcache.core.result import DurableStoreError
from kvcache.core.time_utils import ensure_aware_utc
from kvcache.core.uow import UnitOfWork
from kvcache.domain.models import CacheEntry


NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_upsert_keeps_a_single_row_per_key(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("k", "v1", NOW + timedelta(minutes=1))).unwrap()
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        first = (await uow.entries.find_by_key("k")).unwrap()
        created_at = first.created_at

    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("k", "v2", None)).unwrap()
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        assert (await uow.entries.count()).unwrap() == 1
        entry = (await uow.entries.find_by_key("k")).unwrap()

    assert entry.value == "v2"
    assert entry.expires_at is None
    assert entry.created_at == created_at


@pytest.mark.asyncio
async def test_uncommitted_work_is_rolled_back(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("k", "v", None)).unwrap()

    async with UnitOfWork(session_factory) as uow:
        assert (await uow.entries.find_by_key("k")).unwrap() is None


@pytest.mark.asyncio
async def test_delete_by_key_reports_whether_a_row_was_removed(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("k", "v", None)).unwrap()
        assert (await uow.entries.delete_by_key("k")).unwrap() is True
        assert (await uow.entries.delete_by_key("k")).unwrap() is False
        await uow.commit()


@pytest.mark.asyncio
async def test_conditional_delete_spares_live_and_permanent_entries(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("live", "v", NOW + timedelta(seconds=1))).unwrap()
        (await uow.entries.upsert("permanent", "v", None)).unwrap()
        (await uow.entries.upsert("stale", "v", NOW - timedelta(seconds=1))).unwrap()

        assert (await uow.entries.delete_by_key("live", expired_before=NOW)).unwrap() is False
        assert (await uow.entries.delete_by_key("permanent", expired_before=NOW)).unwrap() is False
        assert (await uow.entries.delete_by_key("stale", expired_before=NOW)).unwrap() is True
        await uow.commit()


@pytest.mark.asyncio
async def test_delete_expired_before_is_strict(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("boundary", "v", NOW)).unwrap()
        (await uow.entries.upsert("old", "v", NOW - timedelta(microseconds=1))).unwrap()
        (await uow.entries.upsert("permanent", "v", None)).unwrap()
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        assert (await uow.entries.delete_expired_before(NOW)).unwrap() == 1
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        assert (await uow.entries.exists_by_key("boundary")).unwrap() is True
        assert (await uow.entries.exists_by_key("old")).unwrap() is False
        assert (await uow.entries.exists_by_key("permanent")).unwrap() is True


@pytest.mark.asyncio
async def test_expiry_round_trips_as_utc(session_factory):
    local = datetime(2030, 1, 1, 15, 0, tzinfo=timezone(timedelta(hours=3)))
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("k", "v", local)).unwrap()
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        entry = (await uow.entries.find_by_key("k")).unwrap()

    assert ensure_aware_utc(entry.expires_at) == NOW
    assert entry.is_expired(NOW) is False
    assert entry.is_expired(NOW + timedelta(microseconds=1)) is True


def test_entry_expiry_predicate():
    assert CacheEntry(key="p", value="v").is_expired(NOW) is False
    assert CacheEntry(key="p", value="v").is_permanent is True
    assert CacheEntry(key="e", value="v", expires_at=NOW).is_expired(NOW) is False
    # Naive values are read as UTC.
    naive = NOW.replace(tzinfo=None) - timedelta(seconds=1)
    assert CacheEntry(key="n", value="v", expires_at=naive).is_expired(NOW) is True


def test_entry_key_is_immutable():
    entry = CacheEntry(key="a", value="v")
    with pytest.raises(ValueError):
        entry.key = "b"


@pytest.mark.asyncio
async def test_database_errors_become_failures(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'no-schema.db'}")
    try:
        async with UnitOfWork(create_session_factory(engine)) as uow:
            result = await uow.entries.find_by_key("k")
    finally:
        await engine.dispose()

    assert result.is_failure()
    assert isinstance(result.error, DurableStoreError)
    assert result.error.operation == "CacheEntry.find_by_key"
    with pytest.raises(DurableStoreError):
        result.unwrap()


@pytest.mark.asyncio
async def test_count_expired_before_matches_what_the_sweep_removes(session_factory):
    async with UnitOfWork(session_factory) as uow:
        (await uow.entries.upsert("boundary", "v", NOW)).unwrap()
        (await uow.entries.upsert("old", "v", NOW - timedelta(seconds=1))).unwrap()
        (await uow.entries.upsert("permanent", "v", None)).unwrap()
        await uow.commit()

    async with UnitOfWork(session_factory) as uow:
        assert (await uow.entries.count_expired_before(NOW)).unwrap() == 1
        assert (await uow.entries.count()).unwrap() == 3
        assert (await uow.entries.delete_expired_before(NOW)).unwrap() == 1


@pytest.mark.asyncio
async def test_stores_satisfy_their_contracts(session_factory, fast_store):
    assert isinstance(fast_store, IFastStore)
    async with UnitOfWork(session_factory) as uow:
        assert isinstance(uow, IUnitOfWork)
        assert isinstance(uow.entries, ICacheEntryRepository)
