"""ActorStore — one single-threaded virtual actor per key.

Each key is owned by a :class:`KeyValueActor` hosted by an
:class:`ActorRuntime`.  An actor runs one operation (a *turn*) at a time,
so the read-compare-write of concurrent callers on the same key is
serialized by construction; actors for different keys run independently.
"""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, AsyncContextManager, AsyncIterator, Protocol

from keyvalue_stores._internal.clock import Clock, SystemClock
from keyvalue_stores._internal.etag import new_etag
from keyvalue_stores.exceptions import ConcurrencyError, DuplicateKeyError, KeyNotFoundError
from keyvalue_stores.logging_config import get_logger
from keyvalue_stores.record import Record
from keyvalue_stores.stores.base import K, KeyValueStore, V

if TYPE_CHECKING:
    from keyvalue_stores.keys import KeySerializer

logger = get_logger(__name__)


@dataclass(frozen=True)
class ActorState:
    """The persisted state of one actor."""

    value: Any
    etag: str
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ActorStateManager(Protocol):
    """Durable storage behind the actors, addressed by actor identity."""

    async def try_get_state(self, actor_type: str, actor_id: str) -> ActorState | None: ...

    async def set_state(self, actor_type: str, actor_id: str, state: ActorState) -> None: ...

    async def remove_state(self, actor_type: str, actor_id: str) -> bool: ...


class InMemoryActorStateManager:
    """Dict-backed actor state.  Data is lost on process exit."""

    def __init__(self) -> None:
        self._states: dict[tuple[str, str], ActorState] = {}

    async def try_get_state(self, actor_type: str, actor_id: str) -> ActorState | None:
        return self._states.get((actor_type, actor_id))

    async def set_state(self, actor_type: str, actor_id: str, state: ActorState) -> None:
        self._states[(actor_type, actor_id)] = state

    async def remove_state(self, actor_type: str, actor_id: str) -> bool:
        return self._states.pop((actor_type, actor_id), None) is not None


class KeyValueActor:
    """Holds the record of a single key and serializes every access to it.

    State is loaded from the state manager on first use and cached; the
    cache is dropped on removal and whenever a persist step fails.
    """

    def __init__(
        self,
        actor_type: str,
        actor_id: str,
        state_manager: ActorStateManager,
        clock: Clock,
    ) -> None:
        self.actor_type = actor_type
        self.actor_id = actor_id
        self._state_manager = state_manager
        self._clock = clock
        self._turn = asyncio.Lock()
        self._state: ActorState | None = None
        self._loaded = False
        # Calls currently holding this activation; managed by ActorRuntime.
        self.callers = 0

    @property
    def holds_state(self) -> bool:
        """Whether a live record is cached in this activation."""
        return self._state is not None

    async def add(self, record: Record[Any]) -> str:
        async with self._turn:
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            if await self._load(now) is not None:
                raise DuplicateKeyError(self.actor_id)
            return await self._persist(record.value, expires_at)

    async def set(self, record: Record[Any], *, upsert: bool = False) -> str:
        async with self._turn:
            now = self._clock.now()
            expires_at = record.resolve_expiry(now)
            current = await self._load(now)
            if current is None and not upsert:
                raise KeyNotFoundError(self.actor_id)
            if current is not None and record.etag is not None and record.etag != current.etag:
                raise ConcurrencyError(self.actor_id, record.etag, current.etag)
            return await self._persist(record.value, expires_at)

    async def try_get(self) -> Record[Any] | None:
        async with self._turn:
            state = await self._load(self._clock.now())
            if state is None:
                return None
            return Record(
                value=copy.deepcopy(state.value),
                etag=state.etag,
                expires_at=state.expires_at,
            )

    async def remove(self, etag: str | None) -> bool:
        async with self._turn:
            current = await self._load(self._clock.now())
            if current is None:
                return False
            if etag is not None and etag != current.etag:
                raise ConcurrencyError(self.actor_id, etag, current.etag)
            self._invalidate()
            return await self._state_manager.remove_state(self.actor_type, self.actor_id)

    # ── Internals (call inside a turn) ───────────────────────

    async def _load(self, now: datetime) -> ActorState | None:
        if not self._loaded:
            self._state = await self._state_manager.try_get_state(self.actor_type, self.actor_id)
            self._loaded = True
        if self._state is not None and self._state.is_expired(now):
            self._invalidate()
            await self._state_manager.remove_state(self.actor_type, self.actor_id)
            self._loaded = True
        return self._state

    async def _persist(self, value: Any, expires_at: datetime | None) -> str:
        state = ActorState(value=copy.deepcopy(value), etag=new_etag(), expires_at=expires_at)
        try:
            await self._state_manager.set_state(self.actor_type, self.actor_id, state)
        except BaseException:
            # The write may or may not have landed; reload on the next turn.
            self._invalidate()
            raise
        self._state = state
        self._loaded = True
        return state.etag

    def _invalidate(self) -> None:
        self._state = None
        self._loaded = False


class ActorRuntime:
    """Activates and tracks :class:`KeyValueActor` instances.

    An actor is created on first use of its ``(actor_type, actor_id)``.
    Calls made through :meth:`activation` release it again once the last
    of them returns and the actor holds no record, so lookups of absent
    keys and removed keys leave nothing behind.  Actors holding a record
    stay active until :meth:`deactivate` is called, after which the next
    call activates a fresh instance that reloads from the state manager.

    Parameters:
        state_manager: Durable actor state; defaults to an in-memory one.
        clock:         Clock handed to activated actors.
    """

    def __init__(
        self,
        state_manager: ActorStateManager | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._state_manager: ActorStateManager = state_manager or InMemoryActorStateManager()
        self._clock: Clock = clock or SystemClock()
        self._actors: dict[tuple[str, str], KeyValueActor] = {}

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def state_manager(self) -> ActorStateManager:
        return self._state_manager

    def actor(self, actor_type: str, actor_id: str) -> KeyValueActor:
        """Return the active actor for this identity, activating it if needed."""
        instance = self._actors.get((actor_type, actor_id))
        if instance is None:
            instance = KeyValueActor(actor_type, actor_id, self._state_manager, self._clock)
            self._actors[(actor_type, actor_id)] = instance
            logger.debug("actor_activated", actor_type=actor_type, actor_id=actor_id)
        return instance

    @asynccontextmanager
    async def activation(self, actor_type: str, actor_id: str) -> AsyncIterator[KeyValueActor]:
        """Hold the actor for this identity active for one call."""
        instance = self.actor(actor_type, actor_id)
        instance.callers += 1
        try:
            yield instance
        finally:
            instance.callers -= 1
            if instance.callers == 0 and not instance.holds_state:
                self._drop(instance)

    def deactivate(self, actor_type: str, actor_id: str) -> bool:
        """Drop an idle actor and its cached state.

        Returns False when no such actor is active or a call is still
        running on it; that actor is left in place.
        """
        instance = self._actors.get((actor_type, actor_id))
        if instance is None or instance.callers:
            return False
        self._drop(instance)
        return True

    def deactivate_all(self) -> int:
        """Drop every idle actor.  Returns how many were dropped."""
        idle = [instance for instance in self._actors.values() if not instance.callers]
        for instance in idle:
            self._drop(instance)
        return len(idle)

    def _drop(self, instance: KeyValueActor) -> None:
        identity = (instance.actor_type, instance.actor_id)
        if self._actors.get(identity) is instance:
            del self._actors[identity]
            logger.debug(
                "actor_deactivated", actor_type=instance.actor_type, actor_id=instance.actor_id
            )

    def __len__(self) -> int:
        return len(self._actors)


class ActorStore(KeyValueStore[K, V]):
    """Store that routes each key to its own actor.

    The actor type is ``"<database>.<container>"`` and the actor id is the
    serialized key, so one container holds one kind of record.

    Parameters:
        runtime: The actor runtime hosting the actors.  The store's clock
                 defaults to the runtime's.

    See :class:`~keyvalue_stores.stores.base.KeyValueStore` for the rest.
    """

    def __init__(
        self,
        runtime: ActorRuntime,
        *,
        database: str = "database",
        container: str = "container",
        entity: str | None = None,
        value_type: Any = Any,
        key_serializer: KeySerializer | None = None,
    ) -> None:
        super().__init__(
            database=database,
            container=container,
            entity=entity,
            value_type=value_type,
            clock=runtime.clock,
            key_serializer=key_serializer,
        )
        self._runtime = runtime

    @property
    def actor_type(self) -> str:
        return f"{self._database}.{self._container}"

    async def add(self, key: K, record: Record[V]) -> str:
        try:
            async with self._activation(key) as actor:
                etag = await actor.add(record)
        except DuplicateKeyError:
            raise DuplicateKeyError(key) from None
        logger.debug("record_added", actor_type=self.actor_type, key=str(key), etag=etag)
        return etag

    async def set(self, key: K, record: Record[V]) -> str:
        try:
            async with self._activation(key) as actor:
                etag = await actor.set(record)
        except KeyNotFoundError:
            raise KeyNotFoundError(key) from None
        except ConcurrencyError as exc:
            logger.debug("etag_conflict", actor_type=self.actor_type, key=str(key))
            raise ConcurrencyError(key, exc.expected_etag, exc.current_etag) from None
        logger.debug("record_updated", actor_type=self.actor_type, key=str(key), etag=etag)
        return etag

    async def add_or_update(self, key: K, record: Record[V]) -> str:
        try:
            async with self._activation(key) as actor:
                return await actor.set(record, upsert=True)
        except ConcurrencyError as exc:
            raise ConcurrencyError(key, exc.expected_etag, exc.current_etag) from None

    async def try_get(self, key: K) -> Record[V] | None:
        async with self._activation(key) as actor:
            return await actor.try_get()

    async def remove(self, key: K, etag: str | None = None) -> bool:
        try:
            async with self._activation(key) as actor:
                removed = await actor.remove(etag)
        except ConcurrencyError as exc:
            logger.debug("etag_conflict", actor_type=self.actor_type, key=str(key))
            raise ConcurrencyError(key, exc.expected_etag, exc.current_etag) from None
        if removed:
            logger.debug("record_removed", actor_type=self.actor_type, key=str(key))
        return removed

    def _activation(self, key: K) -> AsyncContextManager[KeyValueActor]:
        return self._runtime.activation(self.actor_type, self._key_text(key))
