"""RedisStore — records in a Redis instance, guarded by WATCH/MULTI/EXEC."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

try:
    from redis.asyncio import Redis
    from redis.exceptions import WatchError
except ImportError as exc:
    raise ImportError(
        "RedisStore requires the 'redis' package. "
        "Install it with: pip install keyvalue-stores[redis]"
    ) from exc

from keyvalue_stores._internal.etag import new_etag
from keyvalue_stores.exceptions import (
    ConcurrencyError,
    DuplicateKeyError,
    KeyNotFoundError,
    StoreError,
)
from keyvalue_stores.logging_config import get_logger
from keyvalue_stores.serialization import RecordCodec, RecordDocument
from keyvalue_stores.stores.base import K, KeyValueStore, V

if TYPE_CHECKING:
    from datetime import datetime

    from keyvalue_stores._internal.clock import Clock
    from keyvalue_stores.keys import KeySerializer
    from keyvalue_stores.record import Record

logger = get_logger(__name__)


class RedisStore(KeyValueStore[K, V]):
    """Store backed by a Redis server.

    Records are JSON documents under ``<database>:<container>:<entity>:<key>``,
    so several logical stores can share one Redis instance.

    Conditional writes use Redis' optimistic transactions: the current
    document is read under ``WATCH``, its etag compared, and the write queued
    in ``MULTI``.  If any other client touches the key in between, ``EXEC``
    aborts and the call raises :class:`ConcurrencyError`.  No local locks are
    involved, so the guarantee holds across processes.

    Expiry uses Redis' native ``PX`` expiry.  The document also carries
    ``expires_at``, which is checked on every read against the store's
    clock.

    Parameters:
        client:      A ``redis.asyncio.Redis`` client.
        owns_client: Close *client* in :meth:`close`.

    See :class:`~keyvalue_stores.stores.base.KeyValueStore` for the rest.
    """

    def __init__(
        self,
        client: Redis,
        *,
        database: str = "database",
        container: str = "container",
        entity: str | None = None,
        value_type: Any = Any,
        clock: Clock | None = None,
        key_serializer: KeySerializer | None = None,
        owns_client: bool = False,
    ) -> None:
        super().__init__(
            database=database,
            container=container,
            entity=entity,
            value_type=value_type,
            clock=clock,
            key_serializer=key_serializer,
        )
        self._client = client
        self._owns_client = owns_client
        self._codec: RecordCodec[V] = RecordCodec(value_type)

    def redis_key(self, key: K) -> str:
        return f"{self._database}:{self._container}:{self._entity}:{self._key_text(key)}"

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Store contract ───────────────────────────────────────

    async def add(self, key: K, record: Record[V]) -> str:
        key_text = self._key_text(key)
        redis_key = self.redis_key(key)
        now = self._clock.now()
        expires_at = record.resolve_expiry(now)
        etag = new_etag()
        payload = self._codec.encode(key_text, record.value, etag, expires_at)
        px = _milliseconds_until(expires_at, now)

        if not await self._client.set(redis_key, payload, nx=True, px=px):
            # The key exists physically; it may still be logically expired.
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(redis_key)
                if self._live(await pipe.get(redis_key), key_text, now) is not None:
                    raise DuplicateKeyError(key)
                pipe.multi()
                pipe.set(redis_key, payload, px=px)
                try:
                    await pipe.execute()
                except WatchError:
                    raise DuplicateKeyError(key) from None

        logger.debug("record_added", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def set(self, key: K, record: Record[V]) -> str:
        etag = await self._compare_and_set(key, record, upsert=False)
        logger.debug("record_updated", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def add_or_update(self, key: K, record: Record[V]) -> str:
        return await self._compare_and_set(key, record, upsert=True)

    async def try_get(self, key: K) -> Record[V] | None:
        payload = await self._client.get(self.redis_key(key))
        document = self._live(payload, self._key_text(key), self._clock.now())
        if document is None:
            return None
        return self._codec.to_record(document)

    async def remove(self, key: K, etag: str | None = None) -> bool:
        key_text = self._key_text(key)
        redis_key = self.redis_key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            await pipe.watch(redis_key)
            current = self._live(await pipe.get(redis_key), key_text, self._clock.now())
            if current is None:
                return False
            if etag is not None and etag != current.etag:
                logger.debug("etag_conflict", entity=self._entity, key=str(key))
                raise ConcurrencyError(key, etag, current.etag)
            pipe.multi()
            pipe.delete(redis_key)
            try:
                (deleted,) = await pipe.execute()
            except WatchError as exc:
                raise ConcurrencyError(key, etag or current.etag, None) from exc
        logger.debug("record_removed", entity=self._entity, key=str(key))
        return bool(deleted)

    # ── Internals ────────────────────────────────────────────

    async def _compare_and_set(self, key: K, record: Record[V], *, upsert: bool) -> str:
        key_text = self._key_text(key)
        redis_key = self.redis_key(key)
        now = self._clock.now()
        expires_at = record.resolve_expiry(now)
        etag = new_etag()
        payload = self._codec.encode(key_text, record.value, etag, expires_at)
        px = _milliseconds_until(expires_at, now)

        async with self._client.pipeline(transaction=True) as pipe:
            await pipe.watch(redis_key)
            current = self._live(await pipe.get(redis_key), key_text, now)
            if current is None and not upsert:
                raise KeyNotFoundError(key)
            if current is not None and record.etag is not None and record.etag != current.etag:
                logger.debug("etag_conflict", entity=self._entity, key=str(key))
                raise ConcurrencyError(key, record.etag, current.etag)
            pipe.multi()
            # A plain SET also drops any previous native expiry.
            pipe.set(redis_key, payload, px=px)
            try:
                await pipe.execute()
            except WatchError as exc:
                expected = record.etag or (current.etag if current else None)
                raise ConcurrencyError(key, expected, None) from exc
        return etag

    def _live(
        self,
        payload: bytes | str | None,
        key_text: str,
        now: datetime,
    ) -> RecordDocument | None:
        if payload is None:
            return None
        try:
            document = self._codec.parse(payload, key_text)
        except StoreError:
            logger.error("corrupt_record", key=key_text, entity=self._entity)
            raise
        if document.is_expired(now):
            return None
        return document


def _milliseconds_until(expires_at: datetime | None, now: datetime) -> int | None:
    if expires_at is None:
        return None
    return max(1, math.ceil((expires_at - now).total_seconds() * 1000))
