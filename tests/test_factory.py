"""Tests for StoreFactory."""

from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from keyvalue_stores import (
    KeyValueStoreSettings,
    Record,
    StorageType,
    StoreConfigError,
    StoreFactory,
)
from keyvalue_stores.stores import ActorStore, InMemoryStore, JsonFileStore
from keyvalue_stores.stores.redis_cache import RedisStore
from keyvalue_stores.stores.sqlite import SQLiteStore


class Country(BaseModel):
    name: str


def make_factory(clock, registry, **settings):
    return StoreFactory(KeyValueStoreSettings(**settings), clock=clock, namespace_registry=registry)


def test_builtin_types_registered():
    assert set(StoreFactory.registered_types()) >= {t.value for t in StorageType}


async def test_memory_stores_share_the_factory_registry(clock, registry):
    factory = make_factory(clock, registry)
    a = factory.create(Country)
    b = factory.create(Country)
    assert isinstance(a, InMemoryStore)
    assert (a.database, a.container, a.entity) == ("database", "container", "Country")

    etag = await a.add("FR", Record(Country(name="France")))
    assert (await b.get("FR")).etag == etag


async def test_file_store_from_settings(clock, registry, tmp_path):
    factory = make_factory(clock, registry, storage_type="file", storage_root_path=str(tmp_path))
    store = factory.create(Country, database="db", container="geo")
    assert isinstance(store, JsonFileStore)
    await store.add("FR", Record(Country(name="France")))
    assert (tmp_path / "db" / "geo" / "Country" / "FR.json").is_file()


async def test_redis_store_uses_injected_client(clock, registry, redis_client):
    factory = StoreFactory(
        KeyValueStoreSettings(storage_type="redis"),
        clock=clock,
        namespace_registry=registry,
        redis_client=redis_client,
    )
    store = factory.create(entity="Country")
    assert isinstance(store, RedisStore)
    await store.add("FR", Record({"name": "France"}))
    assert await redis_client.exists("database:container:Country:FR")
    await factory.close()
    assert await redis_client.ping()


async def test_redis_client_opened_from_url_is_closed(clock, registry, monkeypatch):
    client = AsyncMock()
    monkeypatch.setattr("redis.asyncio.Redis.from_url", lambda url: client)
    factory = make_factory(clock, registry, storage_type="redis", redis_url="redis://cache:6379/1")

    factory.create()
    assert factory.redis_client is client
    await factory.close()
    client.aclose.assert_awaited_once()


async def test_actor_stores_share_the_runtime(clock, registry):
    factory = make_factory(clock, registry, storage_type="actor")
    a = factory.create(container="geo")
    b = factory.create(container="geo")
    assert isinstance(a, ActorStore)
    assert a.actor_type == "database.geo"
    etag = await a.add("FR", Record(1))
    assert (await b.get("FR")).etag == etag
    assert len(factory.actor_runtime) == 1


async def test_sqlite_store_from_settings(clock, registry, tmp_path):
    factory = make_factory(clock, registry, storage_type="sqlite", sqlite_path=str(tmp_path / "kv.db"))
    store = factory.create()
    assert isinstance(store, SQLiteStore)
    await store.add("k", Record(1))
    await factory.close()
    assert (tmp_path / "kv.db").is_file()


def test_unknown_storage_type(clock, registry):
    factory = make_factory(clock, registry, storage_type="nope")
    with pytest.raises(StoreConfigError, match="unknown storage type"):
        factory.create()


def test_blank_defaults_without_explicit_scope(clock, registry):
    factory = make_factory(clock, registry, default_container=" ")
    with pytest.raises(StoreConfigError, match="default_container"):
        factory.create()
    assert factory.create(container="geo").container == "geo"


def test_blank_root_path(clock, registry):
    factory = make_factory(clock, registry, storage_type="file", storage_root_path="")
    with pytest.raises(StoreConfigError, match="storage_root_path"):
        factory.create()


def test_builder_failure_is_wrapped(clock, registry):
    def broken(factory, scope):
        raise RuntimeError("boom")

    StoreFactory.register("broken", broken)
    try:
        factory = make_factory(clock, registry, storage_type="broken")
        with pytest.raises(StoreConfigError, match="boom"):
            factory.create()
    finally:
        del StoreFactory._registry["broken"]


async def test_custom_storage_type(clock, registry):
    def build_prefixed(factory, scope):
        return InMemoryStore(
            database=f"tenant-{scope.database}",
            container=scope.container,
            entity=scope.entity,
            value_type=scope.value_type,
            clock=factory.clock,
            registry=factory.namespace_registry,
        )

    StoreFactory.register("prefixed", build_prefixed)
    try:
        factory = make_factory(clock, registry, storage_type="prefixed")
        store = factory.create(database="acme")
        assert store.database == "tenant-acme"
        assert "prefixed" in StoreFactory.registered_types()
    finally:
        del StoreFactory._registry["prefixed"]


def test_register_rejects_blank_name():
    with pytest.raises(ValueError):
        StoreFactory.register(" ", lambda factory, scope: None)
