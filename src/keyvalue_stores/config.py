# Copyright (c) 2024 OpenMined
# SPDX-License-Identifier: Apache-2.0
"""Configuration models for building stores.

Settings are plain Pydantic models so they can be read from JSON files,
environment-driven dicts or constructed in code.
"""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ValidationError

from keyvalue_stores.exceptions import StoreConfigError


class StorageType(StrEnum):
    """Built-in backend names understood by :class:`~keyvalue_stores.factory.StoreFactory`."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"
    ACTOR = "actor"
    SQLITE = "sqlite"


class KeyValueStoreSettings(BaseModel):
    """Settings shared by every store a factory builds.

    Attributes:
        storage_type: Backend name (see :class:`StorageType`, or any name
                      registered with ``StoreFactory.register``)
        default_database: Database used when a store is created without one
        default_container: Container used when a store is created without one
        storage_root_path: Root directory of the file backend
        redis_url: Connection URL of the Redis backend
        sqlite_path: Database file of the SQLite backend
    """

    storage_type: str = StorageType.MEMORY
    default_database: str = "database"
    default_container: str = "container"
    storage_root_path: str = "store"
    redis_url: str = "redis://localhost:6379/0"
    sqlite_path: str = "keyvalue_store.db"


def load_settings(path: str | os.PathLike[str]) -> KeyValueStoreSettings:
    """Read settings from a JSON file.

    Raises:
        StoreConfigError: If the file does not hold valid settings.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        return KeyValueStoreSettings.model_validate_json(text)
    except ValidationError as e:
        raise StoreConfigError("settings", f"invalid settings in '{path}': {e}") from e
