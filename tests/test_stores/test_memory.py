"""Tests for InMemoryStore."""

from datetime import timedelta

import pytest

from keyvalue_stores import ConcurrencyError, DuplicateKeyError, Record
from keyvalue_stores.stores import InMemoryStore, NamespaceRegistry
from keyvalue_stores.stores.memory import default_registry


@pytest.fixture
def store(registry, clock):
    return InMemoryStore(database="db", container="geo", registry=registry, clock=clock)


async def test_stores_on_same_namespace_share_state(registry, clock):
    a = InMemoryStore(database="db", container="geo", registry=registry, clock=clock)
    b = InMemoryStore(database="db", container="geo", registry=registry, clock=clock)

    etag = await a.add("FR", Record({"name": "France"}))
    assert (await b.get("FR")).etag == etag

    with pytest.raises(DuplicateKeyError):
        await b.add("FR", Record({"name": "France"}))

    await b.set("FR", Record({"name": "France"}, etag=etag))
    with pytest.raises(ConcurrencyError):
        await a.set("FR", Record({"name": "stale"}, etag=etag))


async def test_different_containers_are_isolated(registry, clock):
    geo = InMemoryStore(database="db", container="geo", registry=registry, clock=clock)
    other = InMemoryStore(database="db", container="other", registry=registry, clock=clock)

    await geo.add("FR", Record({"name": "France"}))
    assert await other.try_get("FR") is None


async def test_entities_in_one_container_are_isolated(registry, clock):
    countries = InMemoryStore(
        database="db", container="geo", entity="Country", registry=registry, clock=clock
    )
    cities = InMemoryStore(
        database="db", container="geo", entity="City", registry=registry, clock=clock
    )

    await countries.add("FR", Record({"name": "France"}))
    await cities.add("FR", Record({"name": "Paris"}))

    assert (await countries.get("FR")).value == {"name": "France"}
    assert (await cities.get("FR")).value == {"name": "Paris"}


async def test_registries_are_independent(clock):
    a = InMemoryStore(registry=NamespaceRegistry(), clock=clock)
    b = InMemoryStore(registry=NamespaceRegistry(), clock=clock)
    await a.add("k", Record(1))
    assert await b.try_get("k") is None


async def test_stored_value_is_a_copy(store):
    value = {"name": "France", "regions": ["IDF"]}
    await store.add("FR", Record(value))
    value["regions"].append("PACA")

    fetched = await store.get("FR")
    assert fetched.value["regions"] == ["IDF"]

    fetched.value["regions"].append("BRE")
    assert (await store.get("FR")).value["regions"] == ["IDF"]


async def test_purge_expired(store, clock):
    await store.add("FR", Record(1, ttl=timedelta(seconds=10)))
    await store.add("DE", Record(2, ttl=timedelta(seconds=100)))
    await store.add("IT", Record(3))

    clock.advance(50)
    assert store.purge_expired() == 1
    assert store.purge_expired() == 0
    assert await store.contains_key("DE")
    assert await store.contains_key("IT")


async def test_clear_only_touches_own_entity(registry, clock):
    countries = InMemoryStore(database="db", container="geo", entity="Country", registry=registry)
    cities = InMemoryStore(database="db", container="geo", entity="City", registry=registry)
    await countries.add("FR", Record(1))
    await cities.add("PAR", Record(2))

    countries.clear()

    assert not await countries.contains_key("FR")
    assert await cities.contains_key("PAR")


async def test_registry_drop(registry, clock):
    store = InMemoryStore(database="db", container="geo", registry=registry, clock=clock)
    await store.add("FR", Record(1))
    assert ("db", "geo") in registry
    assert len(registry) == 1

    registry.drop("db", "geo")
    assert ("db", "geo") not in registry

    fresh = InMemoryStore(database="db", container="geo", registry=registry, clock=clock)
    assert await fresh.try_get("FR") is None


def test_default_registry_is_shared():
    assert default_registry() is default_registry()
    InMemoryStore(database="db-default-test", container="c")
    assert ("db-default-test", "c") in default_registry()
    default_registry().drop("db-default-test", "c")


async def test_repr(store):
    assert "InMemoryStore" in repr(store)
    assert "geo" in repr(store)


def test_blank_scope_rejected(registry):
    with pytest.raises(ValueError):
        InMemoryStore(database=" ", registry=registry)
    with pytest.raises(ValueError):
        InMemoryStore(container="", registry=registry)
