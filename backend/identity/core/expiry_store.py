"""Key/value stores with per-key TTL and expiry notifications.

Ephemeral tokens live here instead of the database. Two implementations:

- RedisExpiryStore: production. Expiry events arrive through keyspace
  notifications on ``__keyevent@<db>__:expired``. Redis drops the value
  before the event is published, so every notifying key gets a phantom
  copy (``<key>:phantom``) that outlives it by a grace period; the listener
  reads and deletes the phantom to recover the expired payload.
- InMemoryExpiryStore: single process (local-first mode, tests). An asyncio
  reaper loop sweeps expired entries; an expired entry read before the
  sweep is expired on access, like Redis' lazy expiry.

Handlers subscribed with ``subscribe()`` run on their own task per event so
a slow handler never blocks the listener. Handler failures are logged and
dropped. Delivery is at-most-once per store instance; handlers must be
idempotent because Redis may deliver to several instances.
"""

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from identity.core.config import settings

logger = logging.getLogger(__name__)

PHANTOM_SUFFIX = ":phantom"


@dataclass(frozen=True)
class ExpiredEntry:
    """Key and last value of an entry whose TTL elapsed."""

    key: str
    value: str


@dataclass(frozen=True)
class TakenEntry:
    """Value removed by ``take()`` and the lifetime it had left."""

    value: str
    ttl_ms: int


ExpiryHandler = Callable[[ExpiredEntry], Awaitable[None]]


class ExpiryStore(ABC):
    """Async string store with TTLs and expiry callbacks.

    Explicit deletes never notify; only TTL expiry does.
    """

    def __init__(self) -> None:
        self._handlers: list[ExpiryHandler] = []
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, handler: ExpiryHandler) -> None:
        """Register a coroutine called with every expired entry."""
        self._handlers.append(handler)

    @abstractmethod
    async def put(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        *,
        only_if_absent: bool = False,
        notify_on_expiry: bool = True,
    ) -> bool:
        """Store ``value`` under ``key`` for ``ttl_ms`` milliseconds.

        Args:
            key: Entry key.
            value: Entry value.
            ttl_ms: Time to live in milliseconds.
            only_if_absent: Write only if no live entry exists (atomic).
            notify_on_expiry: Dispatch handlers when the entry expires.

        Returns:
            False if ``only_if_absent`` and a live entry exists, else True.
        """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the live value for ``key``, or None."""

    @abstractmethod
    async def take(self, key: str) -> TakenEntry | None:
        """Atomically remove and return a live entry without notifying.

        Of several concurrent callers at most one receives the entry.
        """

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove entries without notifying."""

    async def start(self) -> None:
        """Begin watching for expiry. Must run inside an event loop."""

    async def stop(self) -> None:
        """Stop watching for expiry and wait for running handlers."""
        await self.drain()

    async def drain(self) -> None:
        """Wait until every dispatched handler task has finished."""
        while self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def _dispatch(self, entry: ExpiredEntry) -> None:
        for handler in self._handlers:
            task = asyncio.create_task(self._run_handler(handler, entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _run_handler(self, handler: ExpiryHandler, entry: ExpiredEntry) -> None:
        try:
            await handler(entry)
        except Exception:  # noqa: BLE001
            logger.exception("Expiry handler failed for key %s", entry.key)


# =============================================================================
# In-process store
# =============================================================================


@dataclass
class _MemoryEntry:
    value: str
    expires_at: float
    notify: bool


class InMemoryExpiryStore(ExpiryStore):
    """Dict-backed store with an asyncio reaper.

    Safe for async usage on one event loop, not for multi-threaded access.

    Args:
        sweep_seconds: Interval between reaper sweeps.
        clock: Monotonic time source in seconds. Tests pass a fake clock.
    """

    def __init__(
        self,
        *,
        sweep_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self._entries: dict[str, _MemoryEntry] = {}
        self._sweep_seconds = sweep_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    async def put(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        *,
        only_if_absent: bool = False,
        notify_on_expiry: bool = True,
    ) -> bool:
        if only_if_absent and self._live(key) is not None:
            return False
        self._entries[key] = _MemoryEntry(
            value=value,
            expires_at=self._clock() + ttl_ms / 1000,
            notify=notify_on_expiry,
        )
        return True

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry is not None else None

    async def take(self, key: str) -> TakenEntry | None:
        entry = self._live(key)
        if entry is None:
            return None
        del self._entries[key]
        remaining_ms = int((entry.expires_at - self._clock()) * 1000)
        return TakenEntry(value=entry.value, ttl_ms=max(remaining_ms, 1))

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Expire every entry past its deadline.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            self._expire(key)
        return len(expired)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("In-memory expiry reaper already running")
            return
        self._task = asyncio.create_task(self._reap_loop())
        logger.info("In-memory expiry reaper started (sweep=%.1fs)", self._sweep_seconds)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        await super().stop()
        logger.info("In-memory expiry reaper stopped")

    def _live(self, key: str) -> _MemoryEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._expire(key)
            return None
        return entry

    def _expire(self, key: str) -> None:
        entry = self._entries.pop(key)
        if entry.notify:
            self._dispatch(ExpiredEntry(key=key, value=entry.value))

    async def _reap_loop(self) -> None:
        """Background loop: sleep → purge_expired → repeat."""
        try:
            while True:
                await asyncio.sleep(self._sweep_seconds)
                removed = self.purge_expired()
                if removed:
                    logger.debug("Reaped %d expired entries", removed)
        except asyncio.CancelledError:
            logger.debug("Reaper loop cancelled")
            raise


# =============================================================================
# Redis store
# =============================================================================


class RedisExpiryStore(ExpiryStore):
    """Redis-backed store using keyspace notifications for expiry.

    Args:
        client: Redis client created with ``decode_responses=True``.
        grace_seconds: How long a phantom copy outlives its key.
        configure_notifications: Run ``CONFIG SET notify-keyspace-events Ex``
            on start. Servers that forbid CONFIG must enable it themselves.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        grace_seconds: int = 300,
        configure_notifications: bool = True,
    ) -> None:
        super().__init__()
        self._client = client
        self._grace_ms = grace_seconds * 1000
        self._configure_notifications = configure_notifications
        self._pubsub: redis.client.PubSub | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def channel(self) -> str:
        """Keyevent channel for expirations in the client's database."""
        db = self._client.connection_pool.connection_kwargs.get("db", 0)
        return f"__keyevent@{db}__:expired"

    async def put(
        self,
        key: str,
        value: str,
        ttl_ms: int,
        *,
        only_if_absent: bool = False,
        notify_on_expiry: bool = True,
    ) -> bool:
        written = await self._client.set(key, value, px=ttl_ms, nx=only_if_absent)
        if not written:
            return False
        if notify_on_expiry:
            await self._client.set(
                f"{key}{PHANTOM_SUFFIX}", value, px=ttl_ms + self._grace_ms
            )
        return True

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def take(self, key: str) -> TakenEntry | None:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.pttl(key)
            pipe.getdel(key)
            pipe.delete(f"{key}{PHANTOM_SUFFIX}")
            ttl_ms, value, _ = await pipe.execute()
        if value is None:
            return None
        return TakenEntry(value=value, ttl_ms=max(ttl_ms, 1))

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        phantoms = [f"{key}{PHANTOM_SUFFIX}" for key in keys]
        await self._client.delete(*keys, *phantoms)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.warning("Redis expiry listener already running")
            return

        if self._configure_notifications:
            try:
                await self._client.config_set("notify-keyspace-events", "Ex")
            except ResponseError as exc:
                logger.warning(
                    "Could not enable keyspace notifications (%s); "
                    "expiry handlers depend on server configuration",
                    exc,
                )

        self._pubsub = self._client.pubsub()
        await self._pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._listen())
        logger.info("Redis expiry listener subscribed to %s", self.channel)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None
        await super().stop()
        await self._client.aclose()
        logger.info("Redis expiry listener stopped")

    async def handle_expired_key(self, key: str) -> None:
        """Recover the payload of an expired key and dispatch handlers.

        Phantom expirations and keys stored without notification are
        skipped.
        """
        if key.endswith(PHANTOM_SUFFIX):
            return
        value = await self._client.getdel(f"{key}{PHANTOM_SUFFIX}")
        if value is None:
            logger.debug("No phantom for expired key %s", key)
            return
        self._dispatch(ExpiredEntry(key=key, value=value))

    async def _listen(self) -> None:
        assert self._pubsub is not None  # nosec B101
        try:
            async for message in self._pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    await self.handle_expired_key(message["data"])
                except RedisError:
                    logger.exception("Failed to read expired key %s", message["data"])
        except asyncio.CancelledError:
            logger.debug("Expiry listener cancelled")
            raise


# =============================================================================
# Singleton
# =============================================================================

_expiry_store: ExpiryStore | None = None


def create_expiry_store() -> ExpiryStore:
    """Build the store selected by EXPIRY_STORE."""
    if settings.expiry_store == "memory":
        return InMemoryExpiryStore(sweep_seconds=settings.memory_store_sweep_seconds)
    client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return RedisExpiryStore(
        client,
        grace_seconds=settings.expiry_grace_seconds,
        configure_notifications=settings.redis_configure_notifications,
    )


def get_expiry_store() -> ExpiryStore:
    """Get the singleton expiry store instance.

    Returns:
        The configured ExpiryStore singleton.
    """
    global _expiry_store
    if _expiry_store is None:
        _expiry_store = create_expiry_store()
    return _expiry_store


def set_expiry_store(store: ExpiryStore | None) -> None:
    """Replace the singleton (for testing)."""
    global _expiry_store
    _expiry_store = store
