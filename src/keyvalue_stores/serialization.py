"""Serialized record format shared by the file, Redis and SQLite stores.

A record is persisted as one JSON document::

    {"key": "FR", "value": {...}, "etag": "9f1c...", "expires_at": "2026-01-01T00:00:00Z"}

``key`` is the serialized key the document was written for; readers compare
it to the key they asked for to detect addressing collisions.  Unknown fields
are ignored so newer writers stay readable by older readers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from keyvalue_stores.exceptions import KeyCollisionError, StoreError
from keyvalue_stores.record import Record

V = TypeVar("V")


class RecordDocument(BaseModel):
    """On-disk / on-wire shape of a stored record.

    Attributes:
        key:        Serialized key the document belongs to.
        value:      JSON form of the caller value.
        etag:       Version token of this revision.
        expires_at: Absolute expiry, or ``None`` for no expiry.
    """

    model_config = ConfigDict(extra="ignore")

    key: str
    value: Any = None
    etag: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class RecordCodec(Generic[V]):
    """Converts records of one value type to and from :class:`RecordDocument`.

    Values go through a :class:`pydantic.TypeAdapter`, so pydantic models,
    dataclasses, typed dicts and plain JSON values all round-trip.
    """

    def __init__(self, value_type: Any = Any) -> None:
        self._adapter: TypeAdapter[Any] = TypeAdapter(value_type)

    def to_document(
        self,
        key_text: str,
        value: V,
        etag: str,
        expires_at: datetime | None,
    ) -> RecordDocument:
        try:
            raw = self._adapter.dump_python(value, mode="json")
        except PydanticSerializationError as exc:
            raise StoreError("encode", f"value for key '{key_text}' is not serializable: {exc}") from exc
        return RecordDocument(key=key_text, value=raw, etag=etag, expires_at=expires_at)

    def encode(
        self,
        key_text: str,
        value: V,
        etag: str,
        expires_at: datetime | None,
    ) -> str:
        return self.to_document(key_text, value, etag, expires_at).model_dump_json()

    def parse(self, payload: str | bytes, key_text: str) -> RecordDocument:
        """Parse *payload* and verify it belongs to *key_text*.

        Raises:
            StoreError:        If the payload is not a valid record document.
            KeyCollisionError: If the document was written for another key.
        """
        try:
            document = RecordDocument.model_validate_json(payload)
        except ValidationError as exc:
            raise StoreError("decode", f"invalid record for key '{key_text}': {exc}") from exc
        if document.key != key_text:
            raise KeyCollisionError(
                key_text, f"storage slot holds a record written for '{document.key}'"
            )
        return document

    def to_record(self, document: RecordDocument) -> Record[V]:
        try:
            value = self._adapter.validate_python(document.value)
        except ValidationError as exc:
            raise StoreError("decode", f"invalid value for key '{document.key}': {exc}") from exc
        return Record(value=value, etag=document.etag, expires_at=document.expires_at)
