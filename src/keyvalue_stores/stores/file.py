"""JsonFileStore — one JSON document per key under a root directory."""

from __future__ import annotations

import asyncio
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from keyvalue_stores._internal.etag import new_etag
from keyvalue_stores.exceptions import (
    ConcurrencyError,
    DuplicateKeyError,
    KeyCollisionError,
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

_EXTENSION = ".json"
_MAX_FILE_NAME_BYTES = 255

T = TypeVar("T")


class _Cancelled(Exception):
    """The awaiting caller was cancelled before the write was published."""


class _Guard:
    """Lock of one file.  Held through the `with` block, which keeps it alive."""

    __slots__ = ("__weakref__", "_lock")

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> _Guard:
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


class _PathGuards:
    """Process-wide per-file locks, dropped once no operation holds them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._guards: weakref.WeakValueDictionary[str, _Guard] = weakref.WeakValueDictionary()

    def get(self, path: Path) -> _Guard:
        with self._lock:
            guard = self._guards.get(str(path))
            if guard is None:
                guard = _Guard()
                self._guards[str(path)] = guard
            return guard


_guards = _PathGuards()


def _raise_if_cancelled(cancelled: threading.Event) -> None:
    if cancelled.is_set():
        raise _Cancelled


class JsonFileStore(KeyValueStore[K, V]):
    """Persistent store keeping each record in its own JSON file.

    Files live at ``<root>/<database>/<container>/<entity>/<key>.json`` where
    ``<key>`` is the percent-encoded key text.  Each file holds the record's
    key, value, etag and expiry (see :mod:`keyvalue_stores.serialization`).

    Every operation on a key runs in a worker thread under a process-wide
    per-file lock, so the read-compare-write of two writers never
    interleaves.  Writes land in a temporary file first and are published
    atomically: ``add`` links it into place (failing if the file already
    exists) and ``set`` renames it over the current file.

    Parameters:
        root_path: Directory under which all databases are stored.

    See :class:`~keyvalue_stores.stores.base.KeyValueStore` for the rest.
    """

    def __init__(
        self,
        root_path: str | os.PathLike[str],
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
        self._root = Path(root_path)
        self._codec: RecordCodec[V] = RecordCodec(value_type)

    @property
    def directory(self) -> Path:
        return self._root / self._database / self._container / self._entity

    def file_path(self, key: K) -> Path:
        """Return the file that holds the record for *key*.

        Raises:
            KeyCollisionError: If the key does not fit in a file name.
        """
        name = self._key_text(key) + _EXTENSION
        if len(os.fsencode(name)) > _MAX_FILE_NAME_BYTES:
            raise KeyCollisionError(key, f"file name exceeds {_MAX_FILE_NAME_BYTES} bytes")
        return self.directory / name

    # ── Store contract ───────────────────────────────────────

    async def add(self, key: K, record: Record[V]) -> str:
        etag = await self._run(self._add_sync, key, record)
        logger.debug("record_added", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def set(self, key: K, record: Record[V]) -> str:
        etag = await self._run(self._set_sync, key, record, False)
        logger.debug("record_updated", entity=self._entity, key=str(key), etag=etag)
        return etag

    async def add_or_update(self, key: K, record: Record[V]) -> str:
        return await self._run(self._set_sync, key, record, True)

    async def try_get(self, key: K) -> Record[V] | None:
        return await self._run(self._try_get_sync, key)

    async def remove(self, key: K, etag: str | None = None) -> bool:
        removed = await self._run(self._remove_sync, key, etag)
        if removed:
            logger.debug("record_removed", entity=self._entity, key=str(key))
        return removed

    # ── Maintenance ──────────────────────────────────────────

    async def purge_expired(self) -> int:
        """Delete every expired record file of this entity; return how many."""
        count = await self._run(self._purge_sync)
        if count:
            logger.info("expired_records_purged", directory=str(self.directory), count=count)
        return count

    # ── Worker-thread bodies ─────────────────────────────────

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        cancelled = threading.Event()
        try:
            return await asyncio.to_thread(func, cancelled, *args)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    def _add_sync(self, cancelled: threading.Event, key: K, record: Record[V]) -> str:
        key_text = self._key_text(key)
        path = self.file_path(key)
        with _guards.get(path):
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            if self._read_live(path, key_text, now) is not None:
                raise DuplicateKeyError(key)
            etag = new_etag()
            payload = self._codec.encode(key_text, record.value, etag, expires_at)
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = self._write_temp(payload)
            try:
                _raise_if_cancelled(cancelled)
                try:
                    os.link(tmp, path)
                except FileExistsError:
                    # Another process published first.
                    raise DuplicateKeyError(key) from None
            finally:
                tmp.unlink(missing_ok=True)
        return etag

    def _set_sync(
        self,
        cancelled: threading.Event,
        key: K,
        record: Record[V],
        upsert: bool,
    ) -> str:
        key_text = self._key_text(key)
        path = self.file_path(key)
        with _guards.get(path):
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            current = self._read_live(path, key_text, now)
            if current is None and not upsert:
                raise KeyNotFoundError(key)
            if current is not None and record.etag is not None and record.etag != current.etag:
                logger.debug("etag_conflict", entity=self._entity, key=str(key))
                raise ConcurrencyError(key, record.etag, current.etag)
            etag = new_etag()
            payload = self._codec.encode(key_text, record.value, etag, expires_at)
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = self._write_temp(payload)
            try:
                _raise_if_cancelled(cancelled)
                os.replace(tmp, path)
            except BaseException:
                tmp.unlink(missing_ok=True)
                raise
        return etag

    def _try_get_sync(self, cancelled: threading.Event, key: K) -> Record[V] | None:
        key_text = self._key_text(key)
        path = self.file_path(key)
        with _guards.get(path):
            document = self._read_live(path, key_text, self._clock.now())
        if document is None:
            return None
        return self._codec.to_record(document)

    def _remove_sync(self, cancelled: threading.Event, key: K, etag: str | None) -> bool:
        key_text = self._key_text(key)
        path = self.file_path(key)
        with _guards.get(path):
            current = self._read_live(path, key_text, self._clock.now())
            if current is None:
                return False
            if etag is not None and etag != current.etag:
                logger.debug("etag_conflict", entity=self._entity, key=str(key))
                raise ConcurrencyError(key, etag, current.etag)
            _raise_if_cancelled(cancelled)
            try:
                path.unlink()
            except FileNotFoundError:
                return False
        return True

    def _purge_sync(self, cancelled: threading.Event) -> int:
        if not self.directory.is_dir():
            return 0
        count = 0
        for path in sorted(self.directory.glob(f"*{_EXTENSION}")):
            _raise_if_cancelled(cancelled)
            with _guards.get(path):
                now = self._clock.now()
                try:
                    payload = path.read_bytes()
                except FileNotFoundError:
                    continue
                try:
                    document = self._parse(path, payload, path.name[: -len(_EXTENSION)])
                except StoreError:
                    # Logged by _parse; left in place for inspection.
                    continue
                if document.is_expired(now):
                    path.unlink(missing_ok=True)
                    count += 1
        return count

    # ── File helpers (call with the path guard held) ─────────

    def _read_live(self, path: Path, key_text: str, now: datetime) -> RecordDocument | None:
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return None
        document = self._parse(path, payload, key_text)
        if document.is_expired(now):
            path.unlink(missing_ok=True)
            return None
        return document

    def _parse(self, path: Path, payload: bytes, key_text: str) -> RecordDocument:
        try:
            return self._codec.parse(payload, key_text)
        except StoreError:
            logger.error("corrupt_record", path=str(path))
            raise

    def _write_temp(self, payload: str) -> Path:
        fd, name = tempfile.mkstemp(dir=self.directory, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
        except BaseException:
            os.unlink(name)
            raise
        return Path(name)
