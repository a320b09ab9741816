"""Shared test fixtures."""

from datetime import UTC, datetime

import fakeredis
import pytest

from keyvalue_stores import ManualClock
from keyvalue_stores.stores import ActorRuntime, ActorStore, InMemoryStore, JsonFileStore
from keyvalue_stores.stores.memory import NamespaceRegistry
from keyvalue_stores.stores.redis_cache import RedisStore
from keyvalue_stores.stores.sqlite import SQLiteStore

ENGINES = ["memory", "file", "redis", "actor", "sqlite"]


@pytest.fixture
def clock():
    return ManualClock(datetime(2026, 1, 1, tzinfo=UTC))


@pytest.fixture
def registry():
    reg = NamespaceRegistry()
    yield reg
    reg.clear()


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    yield client
    await client.aclose()


@pytest.fixture
def runtime(clock):
    return ActorRuntime(clock=clock)


def make_store(kind, *, clock, registry, tmp_path, redis_client, runtime, **scope):
    scope.setdefault("database", "db")
    scope.setdefault("container", "countries")
    if kind == "memory":
        return InMemoryStore(clock=clock, registry=registry, **scope)
    if kind == "file":
        return JsonFileStore(tmp_path / "store", clock=clock, **scope)
    if kind == "redis":
        return RedisStore(redis_client, clock=clock, **scope)
    if kind == "actor":
        return ActorStore(runtime, **scope)
    if kind == "sqlite":
        return SQLiteStore(str(tmp_path / "kv.db"), clock=clock, **scope)
    raise ValueError(kind)


@pytest.fixture(params=ENGINES)
async def store(request, clock, registry, tmp_path, redis_client, runtime):
    """The same contract, once per backend."""
    s = make_store(
        request.param,
        clock=clock,
        registry=registry,
        tmp_path=tmp_path,
        redis_client=redis_client,
        runtime=runtime,
    )
    yield s
    await s.close()
