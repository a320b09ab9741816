"""SQLiteStore — durable, single-file storage backend using aiosqlite."""

from __future__ import annotations

import asyncio
import contextlib
import sqlite3
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

try:
    import aiosqlite
except ImportError as exc:
    raise ImportError(
        "SQLiteStore requires the 'aiosqlite' package. "
        "Install it with: pip install keyvalue-stores[sqlite]"
    ) from exc

from keyvalue_stores._internal.etag import new_etag
from keyvalue_stores.exceptions import ConcurrencyError, DuplicateKeyError, KeyNotFoundError
from keyvalue_stores.logging_config import get_logger
from keyvalue_stores.serialization import RecordCodec
from keyvalue_stores.stores.base import K, KeyValueStore, V

if TYPE_CHECKING:
    from datetime import datetime

    from keyvalue_stores._internal.clock import Clock
    from keyvalue_stores.keys import KeySerializer
    from keyvalue_stores.record import Record

logger = get_logger(__name__)

T = TypeVar("T")

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_records (
    namespace  TEXT NOT NULL,
    key        TEXT NOT NULL,
    document   TEXT NOT NULL,
    etag       TEXT NOT NULL,
    expires_at REAL,
    PRIMARY KEY (namespace, key)
)
"""

# Appended to every statement that must only see live rows.
_LIVE = "(expires_at IS NULL OR expires_at > ?)"


class SQLiteStore(KeyValueStore[K, V]):
    """Persistent store backed by a single SQLite file.

    ``set`` and ``remove`` are single conditional statements
    (``... WHERE etag = ?``), so the etag comparison happens atomically
    inside SQLite, also across connections and processes sharing the file.

    Parameters:
        db_path: Path to the SQLite database file.  Use ``":memory:"``
                 for an in-memory database (useful for testing).

    See :class:`~keyvalue_stores.stores.base.KeyValueStore` for the rest.
    """

    def __init__(
        self,
        db_path: str = "keyvalue_store.db",
        *,
        database: str = "database",
        container: str = "container",
        entity: str | None = None,
        value_type: Any = Any,
        clock: Clock | None = None,
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
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        # One connection, one transaction at a time.
        self._lock = asyncio.Lock()
        self._codec: RecordCodec[V] = RecordCodec(value_type)

    @property
    def namespace(self) -> str:
        return f"{self._database}:{self._container}:{self._entity}"

    async def _connect(self) -> aiosqlite.Connection:
        if self._db is None:
            db = await aiosqlite.connect(self._db_path)
            try:
                await db.execute(_CREATE_TABLE)
                await db.commit()
            except BaseException:
                await asyncio.shield(db.close())
                raise
            self._db = db
        return self._db

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── Store contract ───────────────────────────────────────

    async def add(self, key: K, record: Record[V]) -> str:
        key_text = self._key_text(key)
        now = self._clock.now()
        expires_at = record.resolve_expiry(now)
        etag = new_etag()
        document = self._codec.encode(key_text, record.value, etag, expires_at)

        async def insert(db: aiosqlite.Connection) -> None:
            await db.execute(
                "DELETE FROM kv_records WHERE namespace = ? AND key = ? "
                "AND expires_at IS NOT NULL AND expires_at <= ?",
                (self.namespace, key_text, now.timestamp()),
            )
            await db.execute(
                "INSERT INTO kv_records (namespace, key, document, etag, expires_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (self.namespace, key_text, document, etag, _timestamp(expires_at)),
            )

        async with self._lock:
            db = await self._connect()
            try:
                await self._commit(db, insert)
            except sqlite3.IntegrityError:
                raise DuplicateKeyError(key) from None

        logger.debug("record_added", namespace=self.namespace, key=key_text, etag=etag)
        return etag

    async def set(self, key: K, record: Record[V]) -> str:
        key_text = self._key_text(key)
        now = self._clock.now()
        expires_at = record.resolve_expiry(now)
        etag = new_etag()
        document = self._codec.encode(key_text, record.value, etag, expires_at)

        async def update(db: aiosqlite.Connection) -> int:
            cursor = await db.execute(
                "UPDATE kv_records SET document = ?, etag = ?, expires_at = ? "
                f"WHERE namespace = ? AND key = ? AND {_LIVE} AND (? IS NULL OR etag = ?)",
                (
                    document,
                    etag,
                    _timestamp(expires_at),
                    self.namespace,
                    key_text,
                    now.timestamp(),
                    record.etag,
                    record.etag,
                ),
            )
            return cursor.rowcount

        async with self._lock:
            db = await self._connect()
            if await self._commit(db, update) == 1:
                logger.debug("record_updated", namespace=self.namespace, key=key_text, etag=etag)
                return etag
            current = await self._live_etag(db, key_text, now.timestamp())

        if current is None:
            raise KeyNotFoundError(key)
        logger.debug("etag_conflict", namespace=self.namespace, key=key_text)
        raise ConcurrencyError(key, record.etag, current)

    async def try_get(self, key: K) -> Record[V] | None:
        key_text = self._key_text(key)
        async with self._lock:
            db = await self._connect()
            async with db.execute(
                f"SELECT document FROM kv_records WHERE namespace = ? AND key = ? AND {_LIVE}",
                (self.namespace, key_text, self._clock.now().timestamp()),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return self._codec.to_record(self._codec.parse(row[0], key_text))

    async def remove(self, key: K, etag: str | None = None) -> bool:
        key_text = self._key_text(key)
        now = self._clock.now().timestamp()

        async def delete(db: aiosqlite.Connection) -> int:
            cursor = await db.execute(
                f"DELETE FROM kv_records WHERE namespace = ? AND key = ? AND {_LIVE} "
                "AND (? IS NULL OR etag = ?)",
                (self.namespace, key_text, now, etag, etag),
            )
            return cursor.rowcount

        async with self._lock:
            db = await self._connect()
            if await self._commit(db, delete) == 1:
                logger.debug("record_removed", namespace=self.namespace, key=key_text)
                return True
            current = await self._live_etag(db, key_text, now)

        if current is None:
            return False
        logger.debug("etag_conflict", namespace=self.namespace, key=key_text)
        raise ConcurrencyError(key, etag, current)

    # ── Maintenance ──────────────────────────────────────────

    async def purge_expired(self) -> int:
        """Delete every expired row of this namespace; return how many."""
        now = self._clock.now().timestamp()

        async def delete_expired(db: aiosqlite.Connection) -> int:
            cursor = await db.execute(
                "DELETE FROM kv_records WHERE namespace = ? "
                "AND expires_at IS NOT NULL AND expires_at <= ?",
                (self.namespace, now),
            )
            return cursor.rowcount

        async with self._lock:
            db = await self._connect()
            count = await self._commit(db, delete_expired)
        if count:
            logger.info("expired_records_purged", namespace=self.namespace, count=count)
        return count

    # ── Transactions ─────────────────────────────────────────

    async def _commit(
        self,
        db: aiosqlite.Connection,
        statements: Callable[[aiosqlite.Connection], Awaitable[T]],
    ) -> T:
        """Run *statements* and commit them as one unit.

        The unit runs in its own task so the caller's cancellation cannot
        interrupt it halfway and leave an open transaction on the shared
        connection.  A cancellation that arrives before the commit starts
        rolls the statements back; one that arrives later lets the commit
        finish.  Either way the caller sees ``CancelledError`` once the
        connection is idle again.
        """
        cancelled = False

        async def unit() -> T:
            try:
                result = await statements(db)
                if cancelled:
                    raise asyncio.CancelledError
                await db.commit()
            except BaseException:
                await db.rollback()
                raise
            return result

        task = asyncio.ensure_future(unit())
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            cancelled = True
            while not task.done():
                with contextlib.suppress(asyncio.CancelledError):
                    await asyncio.wait({task})
            if not task.cancelled():
                # Retrieved so it is not reported as unhandled.
                task.exception()
            raise

    async def _live_etag(self, db: aiosqlite.Connection, key_text: str, now: float) -> str | None:
        async with db.execute(
            f"SELECT etag FROM kv_records WHERE namespace = ? AND key = ? AND {_LIVE}",
            (self.namespace, key_text, now),
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else str(row[0])


def _timestamp(value: datetime | None) -> float | None:
    return None if value is None else value.timestamp()
