"""Custom exceptions for the keyvalue_stores package."""

from __future__ import annotations

from typing import Any, ClassVar


class KeyValueStoreError(Exception):
    """Base exception for all key-value store errors.

    ``retryable`` tells the caller whether re-reading and re-applying the
    operation can succeed without changing its inputs.
    """

    retryable: ClassVar[bool] = False


class DuplicateKeyError(KeyValueStoreError):
    """Raised when ``add`` targets a key that already holds a live record."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"A live record already exists for key '{key}'")


class KeyNotFoundError(KeyValueStoreError, LookupError):
    """Raised when ``get`` or ``set`` targets a missing or expired key."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"Key '{key}' not found")


class ConcurrencyError(KeyValueStoreError):
    """Raised when a write supplies an etag that no longer matches the stored one.

    Re-read the record and re-apply the change to resolve the conflict.
    """

    retryable = True

    def __init__(self, key: Any, expected_etag: str | None, current_etag: str | None) -> None:
        self.key = key
        self.expected_etag = expected_etag
        self.current_etag = current_etag
        msg = f"Etag mismatch for key '{key}': expected '{expected_etag}'"
        if current_etag is not None:
            msg += f", found '{current_etag}'"
        super().__init__(msg)


class StoreError(KeyValueStoreError):
    """Raised when the storage medium returns something the store cannot use."""

    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        msg = f"Store error during '{operation}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class KeyCollisionError(StoreError):
    """Raised when a key cannot be addressed without clobbering another key."""

    def __init__(self, key: Any, detail: str) -> None:
        self.key = key
        super().__init__("address", f"key '{key}': {detail}")


class StoreConfigError(KeyValueStoreError):
    """Raised when a store is misconfigured."""

    def __init__(self, storage_type: str, message: str) -> None:
        self.storage_type = storage_type
        super().__init__(f"Store '{storage_type}' misconfigured: {message}")
