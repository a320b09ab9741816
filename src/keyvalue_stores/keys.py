"""Key serialization — turning caller keys into storage addresses."""

from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import quote


class KeySerializer(Protocol):
    """Converts a key into a stable, collision-free identifier string."""

    def serialize(self, key: Any) -> str: ...


class KeyToStringSerializer:
    """Default serializer: ``str(key)`` with reserved characters percent-encoded.

    The output only contains ``[A-Za-z0-9_.~-]`` and ``%XX`` escapes, so it is
    safe as a file name, a Redis key segment and an actor identity.  Two keys
    with different text never produce the same identifier.

    Keys of mixed types that share a text form (``1`` and ``"1"``) do map to
    the same identifier; use a single key type per store.
    """

    def serialize(self, key: Any) -> str:
        text = str(key)
        if not text.strip():
            raise ValueError(f"The key {key!r} cannot be converted to a non-empty string")
        # Only [A-Za-z0-9_.~-] survive unescaped; `%` itself is escaped too.
        return quote(text, safe="")


def entity_name(value_type: Any) -> str:
    """Return the storage name for records of *value_type*.

    A class may override the default (its ``__name__``) by defining
    ``__entity_name__``.
    """
    if value_type is Any:
        return "default"
    explicit = getattr(value_type, "__entity_name__", None)
    if explicit:
        return str(explicit)
    return getattr(value_type, "__name__", None) or str(value_type)
