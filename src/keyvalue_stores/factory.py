# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Store factory for creating store instances from configuration.

Uses the Registry pattern to map storage type names to builder functions,
allowing extensibility without modifying factory code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar

from keyvalue_stores._internal.clock import Clock, SystemClock
from keyvalue_stores.config import KeyValueStoreSettings, StorageType
from keyvalue_stores.exceptions import StoreConfigError
from keyvalue_stores.stores.actor import ActorRuntime, ActorStore
from keyvalue_stores.stores.file import JsonFileStore
from keyvalue_stores.stores.memory import InMemoryStore, NamespaceRegistry, default_registry

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from keyvalue_stores.stores.base import KeyValueStore


@dataclass(frozen=True)
class StoreScope:
    """Resolved addressing of a store about to be built.

    Attributes:
        database: Database name (never blank)
        container: Container name (never blank)
        entity: Entity name, or None to derive it from value_type
        value_type: Type of the stored values
    """

    database: str
    container: str
    entity: str | None
    value_type: Any


StoreBuilder = Callable[["StoreFactory", StoreScope], "KeyValueStore[Any, Any]"]


class StoreFactory:
    """Creates stores from :class:`KeyValueStoreSettings`.

    The factory owns the resources its stores share: the in-memory namespace
    registry, the actor runtime and the Redis client.  Call :meth:`close` to
    release the stores it created and the resources it opened.

    Example:
        factory = StoreFactory(KeyValueStoreSettings(storage_type="file", storage_root_path="/data"))
        countries = factory.create(Country, container="geo")
        etag = await countries.add("FR", Record(Country(name="France")))
    """

    # Class-level registry mapping storage type names to builders
    _registry: ClassVar[dict[str, StoreBuilder]] = {}

    def __init__(
        self,
        settings: KeyValueStoreSettings | None = None,
        *,
        clock: Clock | None = None,
        namespace_registry: NamespaceRegistry | None = None,
        actor_runtime: ActorRuntime | None = None,
        redis_client: Redis | None = None,
    ) -> None:
        self._settings = settings or KeyValueStoreSettings()
        self._clock: Clock = clock or SystemClock()
        self._namespace_registry = namespace_registry or default_registry()
        self._actor_runtime = actor_runtime
        self._redis_client = redis_client
        self._owns_redis_client = False
        self._stores: list[KeyValueStore[Any, Any]] = []

    @classmethod
    def register(cls, type_name: str, builder: StoreBuilder) -> None:
        """Register a custom storage type.

        Args:
            type_name: Name to use as ``storage_type`` in settings
            builder: Callable receiving the factory and the resolved scope

        Example:
            StoreFactory.register("tiered", build_tiered_store)
        """
        if not type_name.strip():
            raise ValueError("type_name must not be blank")
        cls._registry[type_name] = builder

    @classmethod
    def registered_types(cls) -> list[str]:
        """Return list of registered storage type names."""
        return list(cls._registry.keys())

    # ── Shared resources ─────────────────────────────────────

    @property
    def settings(self) -> KeyValueStoreSettings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def namespace_registry(self) -> NamespaceRegistry:
        return self._namespace_registry

    @property
    def actor_runtime(self) -> ActorRuntime:
        if self._actor_runtime is None:
            self._actor_runtime = ActorRuntime(clock=self._clock)
        return self._actor_runtime

    @property
    def redis_client(self) -> Redis:
        if self._redis_client is None:
            from redis.asyncio import Redis

            self._redis_client = Redis.from_url(self._settings.redis_url)
            self._owns_redis_client = True
        return self._redis_client

    # ── Creation ─────────────────────────────────────────────

    def create(
        self,
        value_type: Any = Any,
        *,
        database: str | None = None,
        container: str | None = None,
        entity: str | None = None,
    ) -> KeyValueStore[Any, Any]:
        """Create a store of the configured storage type.

        Args:
            value_type: Type of the stored values
            database: Database name; defaults to ``settings.default_database``
            container: Container name; defaults to ``settings.default_container``
            entity: Entity name; defaults to the name of value_type

        Returns:
            The created store

        Raises:
            StoreConfigError: If the type is unknown or creation fails
        """
        storage_type = self._settings.storage_type
        builder = self._registry.get(storage_type)
        if builder is None:
            available = ", ".join(sorted(self.registered_types()))
            raise StoreConfigError(
                storage_type, f"unknown storage type. Available types: {available}"
            )

        scope = StoreScope(
            database=self._resolve(database, self._settings.default_database, "database"),
            container=self._resolve(container, self._settings.default_container, "container"),
            entity=entity,
            value_type=value_type,
        )

        try:
            store = builder(self, scope)
        except StoreConfigError:
            raise
        except Exception as e:
            raise StoreConfigError(storage_type, f"failed to create store: {e}") from e

        self._stores.append(store)
        return store

    async def close(self) -> None:
        """Close every store this factory created and the Redis client it opened."""
        stores, self._stores = self._stores, []
        for store in stores:
            await store.close()
        if self._owns_redis_client and self._redis_client is not None:
            await self._redis_client.aclose()
            self._redis_client = None
            self._owns_redis_client = False

    def _resolve(self, explicit: str | None, default: str, name: str) -> str:
        if explicit and explicit.strip():
            return explicit
        if not default.strip():
            raise StoreConfigError(
                self._settings.storage_type,
                f"no {name} given and 'default_{name}' is not set",
            )
        return default


# ── Built-in builders ────────────────────────────────────────


def _build_memory(factory: StoreFactory, scope: StoreScope) -> KeyValueStore[Any, Any]:
    return InMemoryStore(
        database=scope.database,
        container=scope.container,
        entity=scope.entity,
        value_type=scope.value_type,
        clock=factory.clock,
        registry=factory.namespace_registry,
    )


def _build_file(factory: StoreFactory, scope: StoreScope) -> KeyValueStore[Any, Any]:
    if not factory.settings.storage_root_path.strip():
        raise StoreConfigError(StorageType.FILE, "'storage_root_path' is not set")
    return JsonFileStore(
        factory.settings.storage_root_path,
        database=scope.database,
        container=scope.container,
        entity=scope.entity,
        value_type=scope.value_type,
        clock=factory.clock,
    )


def _build_redis(factory: StoreFactory, scope: StoreScope) -> KeyValueStore[Any, Any]:
    from keyvalue_stores.stores.redis_cache import RedisStore

    return RedisStore(
        factory.redis_client,
        database=scope.database,
        container=scope.container,
        entity=scope.entity,
        value_type=scope.value_type,
        clock=factory.clock,
    )


def _build_actor(factory: StoreFactory, scope: StoreScope) -> KeyValueStore[Any, Any]:
    return ActorStore(
        factory.actor_runtime,
        database=scope.database,
        container=scope.container,
        entity=scope.entity,
        value_type=scope.value_type,
    )


def _build_sqlite(factory: StoreFactory, scope: StoreScope) -> KeyValueStore[Any, Any]:
    from keyvalue_stores.stores.sqlite import SQLiteStore

    if not factory.settings.sqlite_path.strip():
        raise StoreConfigError(StorageType.SQLITE, "'sqlite_path' is not set")
    return SQLiteStore(
        factory.settings.sqlite_path,
        database=scope.database,
        container=scope.container,
        entity=scope.entity,
        value_type=scope.value_type,
        clock=factory.clock,
    )


StoreFactory.register(StorageType.MEMORY, _build_memory)
StoreFactory.register(StorageType.FILE, _build_file)
StoreFactory.register(StorageType.REDIS, _build_redis)
StoreFactory.register(StorageType.ACTOR, _build_actor)
StoreFactory.register(StorageType.SQLITE, _build_sqlite)
