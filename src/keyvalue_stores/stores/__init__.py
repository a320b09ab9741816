"""Storage backends implementing the key-value store contract.

:class:`RedisStore` and :class:`SQLiteStore` need the ``redis`` and
``sqlite`` extras; import them from their modules.
"""

from keyvalue_stores.stores.actor import ActorRuntime, ActorStore, InMemoryActorStateManager
from keyvalue_stores.stores.base import KeyValueStore
from keyvalue_stores.stores.file import JsonFileStore
from keyvalue_stores.stores.memory import InMemoryStore, NamespaceRegistry

__all__ = [
    "ActorRuntime",
    "ActorStore",
    "InMemoryActorStateManager",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "NamespaceRegistry",
]
