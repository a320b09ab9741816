"""keyvalue_stores — typed key-value persistence with optimistic concurrency.

Every backend implements the same contract: ``add`` / ``get`` / ``try_get``
/ ``set`` / ``remove`` / ``contains_key`` over :class:`Record` envelopes,
with etag-based conflict detection and optional expiry.
"""

from keyvalue_stores._internal.clock import Clock, ManualClock, SystemClock
from keyvalue_stores.config import KeyValueStoreSettings, StorageType, load_settings
from keyvalue_stores.exceptions import (
    ConcurrencyError,
    DuplicateKeyError,
    KeyCollisionError,
    KeyNotFoundError,
    KeyValueStoreError,
    StoreConfigError,
    StoreError,
)
from keyvalue_stores.factory import StoreFactory
from keyvalue_stores.record import Record
from keyvalue_stores.stores.base import KeyValueStore

__all__ = [
    "Clock",
    "ConcurrencyError",
    "DuplicateKeyError",
    "KeyCollisionError",
    "KeyNotFoundError",
    "KeyValueStore",
    "KeyValueStoreError",
    "KeyValueStoreSettings",
    "ManualClock",
    "Record",
    "StorageType",
    "StoreConfigError",
    "StoreError",
    "StoreFactory",
    "SystemClock",
    "load_settings",
]
