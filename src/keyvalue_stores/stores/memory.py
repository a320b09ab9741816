"""InMemoryStore — zero-config, dict-backed storage for development and testing."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from keyvalue_stores._internal.etag import new_etag
from keyvalue_stores.exceptions import ConcurrencyError, DuplicateKeyError, KeyNotFoundError
from keyvalue_stores.logging_config import get_logger
from keyvalue_stores.record import Record
from keyvalue_stores.stores.base import K, KeyValueStore, V

if TYPE_CHECKING:
    from keyvalue_stores._internal.clock import Clock
    from keyvalue_stores.keys import KeySerializer

logger = get_logger(__name__)


@dataclass
class _Entry:
    value: Any
    etag: str
    expires_at: datetime | None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class _Namespace:
    """Entries of one ``(database, container)`` pair and the lock guarding them.

    Entries are keyed by ``(entity, key)`` so stores of different record
    types can share a container.
    """

    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: dict[tuple[str, str], _Entry] = field(default_factory=dict)


class NamespaceRegistry:
    """Process-wide table of in-memory namespaces.

    Every :class:`InMemoryStore` that addresses the same
    ``(database, container)`` through the same registry shares one lock and
    one map.  Tear namespaces down explicitly with :meth:`drop` or
    :meth:`clear`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._namespaces: dict[tuple[str, str], _Namespace] = {}

    def namespace(self, database: str, container: str) -> _Namespace:
        with self._lock:
            ns = self._namespaces.get((database, container))
            if ns is None:
                ns = self._namespaces[(database, container)] = _Namespace()
            return ns

    def drop(self, database: str, container: str) -> None:
        """Forget a namespace and everything stored in it."""
        with self._lock:
            self._namespaces.pop((database, container), None)

    def clear(self) -> None:
        """Forget every namespace."""
        with self._lock:
            self._namespaces.clear()

    def __contains__(self, item: tuple[str, str]) -> bool:
        with self._lock:
            return item in self._namespaces

    def __len__(self) -> int:
        with self._lock:
            return len(self._namespaces)


_default_registry = NamespaceRegistry()


def default_registry() -> NamespaceRegistry:
    """Return the registry used by stores created without one."""
    return _default_registry


class InMemoryStore(KeyValueStore[K, V]):
    """In-memory store.  Data is lost on process exit.

    All operations hold the namespace lock for their whole check-then-mutate
    span and never suspend while holding it.  Values are deep-copied on the
    way in and out, so callers cannot mutate stored state in place.

    Parameters:
        database:  Logical database name.
        container: Logical container name.
        registry:  Namespace registry; defaults to :func:`default_registry`.

    See :class:`~keyvalue_stores.stores.base.KeyValueStore` for the rest.
    """

    def __init__(
        self,
        *,
        database: str = "database",
        container: str = "container",
        entity: str | None = None,
        value_type: Any = Any,
        clock: Clock | None = None,
        registry: NamespaceRegistry | None = None,
        key_serializer: KeySerializer | None = None,
    ) -> None:
        super().__init__(
            database=database,
            container=container,
            entity=entity,
            value_type=value_type,
            clock=clock,
            key_serializer=key_serializer,
        )
        self._registry = registry or default_registry()
        self._ns = self._registry.namespace(database, container)

    # ── Store contract ───────────────────────────────────────

    async def add(self, key: K, record: Record[V]) -> str:
        value = copy.deepcopy(record.value)
        with self._ns.lock:
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            slot = self._slot(key)
            if self._live(slot, now) is not None:
                raise DuplicateKeyError(key)
            etag = new_etag()
            self._ns.entries[slot] = _Entry(value, etag, expires_at)
        logger.debug("record_added", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def set(self, key: K, record: Record[V]) -> str:
        value = copy.deepcopy(record.value)
        with self._ns.lock:
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            slot = self._slot(key)
            current = self._live(slot, now)
            if current is None:
                raise KeyNotFoundError(key)
            self._check_etag(key, record.etag, current)
            etag = new_etag()
            self._ns.entries[slot] = _Entry(value, etag, expires_at)
        logger.debug("record_updated", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def add_or_update(self, key: K, record: Record[V]) -> str:
        value = copy.deepcopy(record.value)
        with self._ns.lock:
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            slot = self._slot(key)
            current = self._live(slot, now)
            if current is not None:
                self._check_etag(key, record.etag, current)
            etag = new_etag()
            self._ns.entries[slot] = _Entry(value, etag, expires_at)
        return etag

    async def try_get(self, key: K) -> Record[V] | None:
        with self._ns.lock:
            entry = self._live(self._slot(key), self._clock.now())
            if entry is None:
                return None
            value = copy.deepcopy(entry.value)
            return Record(value=value, etag=entry.etag, expires_at=entry.expires_at)

    async def contains_key(self, key: K) -> bool:
        with self._ns.lock:
            return self._live(self._slot(key), self._clock.now()) is not None

    async def remove(self, key: K, etag: str | None = None) -> bool:
        with self._ns.lock:
            slot = self._slot(key)
            current = self._live(slot, self._clock.now())
            if current is None:
                return False
            self._check_etag(key, etag, current)
            del self._ns.entries[slot]
        logger.debug("record_removed", entity=self._entity, key=str(key))
        return True

    # ── Maintenance ──────────────────────────────────────────

    def purge_expired(self) -> int:
        """Delete every expired entry in the namespace; return how many."""
        with self._ns.lock:
            now = self._clock.now()
            expired = [slot for slot, entry in self._ns.entries.items() if entry.is_expired(now)]
            for slot in expired:
                del self._ns.entries[slot]
        if expired:
            logger.info(
                "expired_records_purged",
                database=self._database,
                container=self._container,
                count=len(expired),
            )
        return len(expired)

    def clear(self) -> None:
        """Delete every entry of this store's entity."""
        with self._ns.lock:
            for slot in [s for s in self._ns.entries if s[0] == self._entity]:
                del self._ns.entries[slot]

    # ── Internals (call with the namespace lock held) ────────

    def _slot(self, key: K) -> tuple[str, str]:
        return (self._entity, self._key_text(key))

    def _live(self, slot: tuple[str, str], now: datetime) -> _Entry | None:
        entry = self._ns.entries.get(slot)
        if entry is not None and entry.is_expired(now):
            del self._ns.entries[slot]
            return None
        return entry

    def _check_etag(self, key: K, etag: str | None, current: _Entry) -> None:
        if etag is not None and etag != current.etag:
            logger.debug("etag_conflict", entity=self._entity, key=str(key))
            raise ConcurrencyError(key, etag, current.etag)
