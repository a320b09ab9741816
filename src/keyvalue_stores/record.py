"""Record — the envelope every store reads and writes."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class Record(Generic[V]):
    """Immutable envelope around a stored value.

    Attributes:
        value:      The caller payload.
        etag:       Version token.  ``None`` on first insertion; on update or
                    removal it must match the token currently stored.
        expires_at: Absolute, timezone-aware instant after which the record
                    is treated as absent.
        ttl:        Relative lifetime.  When set, the store computes
                    ``expires_at`` from its own clock at write time and this
                    takes precedence over ``expires_at``.

    Records handed back by a store always carry the stored ``etag`` and the
    resolved ``expires_at``, with ``ttl`` left empty.
    """

    value: V
    etag: str | None = None
    expires_at: datetime | None = None
    ttl: timedelta | None = None

    # ── Copy-on-write helpers ────────────────────────────────

    def evolve(self, **changes: Any) -> Record[V]:
        """Return a copy of this record with *changes* applied."""
        return replace(self, **changes)

    def with_value(self, value: V) -> Record[V]:
        """Return a copy carrying *value* and the same etag.

        The relative ``ttl`` is dropped and the absolute expiry kept, so
        writing the result back preserves the current expiry.
        """
        return replace(self, value=value, ttl=None)

    def with_etag(self, etag: str | None) -> Record[V]:
        return replace(self, etag=etag)

    # ── Expiry ───────────────────────────────────────────────

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at

    def resolve_expiry(self, now: datetime) -> datetime | None:
        """Return the absolute expiry a write at *now* should persist.

        Raises:
            ValueError: If ``ttl`` is not positive, or ``expires_at`` is naive
                        or not in the future.
        """
        if self.ttl is not None:
            if self.ttl <= timedelta(0):
                raise ValueError(f"ttl must be positive, got {self.ttl}")
            return now + self.ttl
        if self.expires_at is None:
            return None
        if self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")
        if self.expires_at <= now:
            raise ValueError(f"expires_at {self.expires_at.isoformat()} is not in the future")
        return self.expires_at
