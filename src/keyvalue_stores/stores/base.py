"""Store contract — optimistic-concurrency key-value persistence."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from keyvalue_stores._internal.clock import Clock, SystemClock
from keyvalue_stores.exceptions import KeyNotFoundError
from keyvalue_stores.keys import KeySerializer, KeyToStringSerializer, entity_name

if TYPE_CHECKING:
    from types import TracebackType

    from keyvalue_stores.record import Record

K = TypeVar("K")
V = TypeVar("V")


class KeyValueStore(ABC, Generic[K, V]):
    """Abstract base for all storage backends.

    A store addresses one *scope*, ``(database, container, entity)``, and
    keeps :class:`~keyvalue_stores.record.Record` envelopes under caller keys.
    Every backend implements the same contract:

    * ``add`` creates a record and fails if a live one exists.
    * ``set`` replaces a live record; when the record carries an ``etag`` it
      must match the stored one.
    * ``remove`` deletes a record, validated against an optional ``etag``.
    * Each successful write returns a token the key has never held before.
    * Expired records are invisible to every operation.

    Parameters:
        database:       Logical database name.
        container:      Logical container name inside the database.
        entity:         Name of the record type; defaults to the name of
                        *value_type*.
        value_type:     Type of the stored values, used by backends that
                        serialize.
        clock:          Injectable clock for expiry.
        key_serializer: Converts keys to storage identifiers.
    """

    def __init__(
        self,
        *,
        database: str,
        container: str,
        entity: str | None = None,
        value_type: Any = Any,
        clock: Clock | None = None,
        key_serializer: KeySerializer | None = None,
    ) -> None:
        if not database.strip():
            raise ValueError("database must not be blank")
        if not container.strip():
            raise ValueError("container must not be blank")
        self._database = database
        self._container = container
        self._entity = entity or entity_name(value_type)
        self._value_type = value_type
        self._clock: Clock = clock or SystemClock()
        self._key_serializer: KeySerializer = key_serializer or KeyToStringSerializer()

    @property
    def database(self) -> str:
        return self._database

    @property
    def container(self) -> str:
        return self._container

    @property
    def entity(self) -> str:
        return self._entity

    # ── Store contract ───────────────────────────────────────

    @abstractmethod
    async def add(self, key: K, record: Record[V]) -> str:
        """Create a record and return its first etag.

        Raises:
            DuplicateKeyError: If a live record already exists for *key*.
        """
        ...

    @abstractmethod
    async def set(self, key: K, record: Record[V]) -> str:
        """Replace a live record and return its new etag.

        The expiry is replaced by the one *record* resolves to, or cleared.

        Raises:
            KeyNotFoundError: If no live record exists for *key*.
            ConcurrencyError: If ``record.etag`` is set and differs from the
                              stored etag.
        """
        ...

    @abstractmethod
    async def try_get(self, key: K) -> Record[V] | None:
        """Return the live record for *key*, or ``None``."""
        ...

    @abstractmethod
    async def remove(self, key: K, etag: str | None = None) -> bool:
        """Delete the record for *key*.

        Returns ``True`` if a live record was deleted, ``False`` if there was
        none.  ``etag=None`` removes unconditionally.

        Raises:
            ConcurrencyError: If *etag* is set and differs from the stored etag.
        """
        ...

    async def get(self, key: K) -> Record[V]:
        """Return the live record for *key*.

        Raises:
            KeyNotFoundError: If no live record exists.
        """
        record = await self.try_get(key)
        if record is None:
            raise KeyNotFoundError(key)
        return record

    async def contains_key(self, key: K) -> bool:
        """Return ``True`` if a live record exists for *key*."""
        return await self.try_get(key) is not None

    async def add_or_update(self, key: K, record: Record[V]) -> str:
        """``set`` the record if it exists, ``add`` it otherwise."""
        try:
            return await self.set(key, record)
        except KeyNotFoundError:
            return await self.add(key, record)

    # ── Lifecycle ────────────────────────────────────────────

    async def close(self) -> None:
        """Release backend resources.  No-op unless the backend owns any."""

    async def __aenter__(self) -> KeyValueStore[K, V]:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Helpers for backends ─────────────────────────────────

    def _key_text(self, key: K) -> str:
        return self._key_serializer.serialize(key)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(database={self._database!r}, "
            f"container={self._container!r}, entity={self._entity!r})"
        )
