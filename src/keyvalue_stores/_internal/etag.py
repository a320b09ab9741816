"""Version token generation."""

from __future__ import annotations

import uuid


def new_etag() -> str:
    """Return a fresh, opaque version token.

    Tokens are random 128-bit identifiers, so a key never sees the same
    token twice across its lifetime.
    """
    return uuid.uuid4().hex
