"""Time sources for record expiry.

Stores compute ``expires_at`` from ``Clock.now()`` and compare against it
on every read, so swapping the clock controls when records expire.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Anything with an aware ``now()``."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to.

    Hand one to a store (or to :class:`~keyvalue_stores.StoreFactory`) to
    step records past their expiry without sleeping.

    Parameters:
        start: Initial time.  Must be timezone-aware; defaults to now.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = _aware(start) if start is not None else SystemClock().now()

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float | timedelta) -> datetime:
        """Move forward by *seconds* (or a timedelta) and return the new time."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("a clock cannot run backwards")
        self._now += step
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to *moment*, which may not lie before the current time."""
        moment = _aware(moment)
        if moment < self._now:
            raise ValueError("a clock cannot run backwards")
        self._now = moment


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        raise ValueError("clock times must be timezone-aware")
    return moment
