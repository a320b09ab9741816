"""Tests for SQLiteStore."""

import asyncio
from datetime import timedelta

import pytest

from keyvalue_stores import ConcurrencyError, DuplicateKeyError, Record
from keyvalue_stores.stores.sqlite import SQLiteStore


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "kv.db")


@pytest.fixture
async def store(db_path, clock):
    s = SQLiteStore(db_path, database="db", container="geo", clock=clock)
    yield s
    await s.close()


async def test_persists_across_instances(db_path, clock):
    async with SQLiteStore(db_path, clock=clock) as first:
        etag = await first.add("FR", Record({"name": "France"}))

    async with SQLiteStore(db_path, clock=clock) as second:
        record = await second.get("FR")
    assert record.value == {"name": "France"}
    assert record.etag == etag


async def test_conflict_across_connections(db_path, clock):
    async with (
        SQLiteStore(db_path, clock=clock) as a,
        SQLiteStore(db_path, clock=clock) as b,
    ):
        etag = await a.add("FR", Record(1))
        with pytest.raises(DuplicateKeyError):
            await b.add("FR", Record(2))

        await b.set("FR", Record(2, etag=etag))
        with pytest.raises(ConcurrencyError):
            await a.set("FR", Record(3, etag=etag))
        with pytest.raises(ConcurrencyError):
            await a.remove("FR", etag)


async def test_namespaces_are_isolated(db_path, clock):
    async with (
        SQLiteStore(db_path, container="geo", clock=clock) as geo,
        SQLiteStore(db_path, container="other", clock=clock) as other,
        SQLiteStore(db_path, container="geo", entity="City", clock=clock) as cities,
    ):
        await geo.add("FR", Record(1))
        assert await other.try_get("FR") is None
        assert await cities.try_get("FR") is None
        assert geo.namespace == "database:geo:default"
        assert cities.namespace == "database:geo:City"


async def test_purge_expired(store, clock):
    await store.add("FR", Record(1, ttl=timedelta(seconds=10)))
    await store.add("DE", Record(2, ttl=timedelta(seconds=100)))
    await store.add("IT", Record(3))

    clock.advance(50)
    assert await store.purge_expired() == 1
    assert await store.purge_expired() == 0
    assert await store.contains_key("DE")
    assert await store.contains_key("IT")


async def test_in_memory_database(clock):
    async with SQLiteStore(":memory:", clock=clock) as store:
        etag = await store.add("k", Record([1, 2, 3]))
        assert (await store.get("k")).etag == etag


async def test_close_is_idempotent(store):
    await store.add("k", Record(1))
    await store.close()
    await store.close()


async def _cancel_during(store, monkeypatch, statement, operation):
    """Cancel *operation* while *statement* is executing on the store's connection."""
    db = store._db
    real_execute = db.execute
    started = asyncio.Event()
    release = asyncio.Event()

    async def gated_execute(sql, parameters=None):
        cursor = await real_execute(sql, parameters)
        if sql.startswith(statement):
            started.set()
            await release.wait()
        return cursor

    monkeypatch.setattr(db, "execute", gated_execute)
    task = asyncio.create_task(operation)
    await started.wait()
    task.cancel()
    await asyncio.sleep(0)
    release.set()
    with pytest.raises(asyncio.CancelledError):
        await task
    monkeypatch.undo()


async def test_cancelled_set_is_rolled_back(store, db_path, clock, monkeypatch):
    etag = await store.add("FR", Record({"name": "France"}))

    await _cancel_during(
        store, monkeypatch, "UPDATE", store.set("FR", Record({"name": "Cancelled"}, etag=etag))
    )

    record = await store.get("FR")
    assert record.value == {"name": "France"}
    assert record.etag == etag

    # A later commit on the same connection must not publish the cancelled change.
    await store.add("DE", Record({"name": "Germany"}))
    async with SQLiteStore(db_path, database="db", container="geo", clock=clock) as other:
        assert (await other.get("FR")).etag == etag


async def test_cancelled_add_is_rolled_back(store, db_path, clock, monkeypatch):
    await store.add("DE", Record(1))

    await _cancel_during(store, monkeypatch, "INSERT", store.add("FR", Record(2)))

    assert not await store.contains_key("FR")
    await store.add("IT", Record(3))
    async with SQLiteStore(db_path, database="db", container="geo", clock=clock) as other:
        assert await other.try_get("FR") is None


async def test_cancelled_remove_is_rolled_back(store, monkeypatch):
    etag = await store.add("FR", Record(1))

    await _cancel_during(store, monkeypatch, "DELETE", store.remove("FR", etag))

    assert (await store.get("FR")).etag == etag
    assert await store.remove("FR", etag) is True
