"""Snapshot cache with single-flight recomputation.

Every scope has at most one computation in flight. Concurrent readers of a
missing or expired scope await the same task and receive the same snapshot.

Invalidation bumps a per-scope generation and detaches the in-flight task:
a computation that started before the invalidation still answers the
readers already waiting on it, but its result is neither stored nor
broadcast, so later readers always trigger a fresh computation.

Backend failures never reach the caller. Reads and writes that raise are
logged and the snapshot is computed directly (fail-open).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import orjson
import structlog
from pydantic import ValidationError

from src.core.redis import dashboard_cache_key

from .schemas import DashboardSnapshot


if TYPE_CHECKING:
    import redis.asyncio as redis

    from .models import Scope


logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
ComputeFn = Callable[[], Awaitable[DashboardSnapshot]]
RecomputeHook = Callable[["Scope", DashboardSnapshot], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ==============================================================================
# Entries and errors
# ==============================================================================


class CacheBackendError(Exception):
    """The cache backing store could not be read or written."""

    def __init__(self, message: str, operation: str = "unknown"):
        self.message = message
        self.operation = operation
        super().__init__(message)


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of a scope with its validity window."""

    key: str
    value: DashboardSnapshot
    computed_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_json(self) -> bytes:
        return orjson.dumps(
            {
                "key": self.key,
                "value": self.value.model_dump(mode="json"),
                "computed_at": self.computed_at.isoformat(),
                "expires_at": self.expires_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: bytes | str) -> CacheEntry:
        data = orjson.loads(raw)
        return cls(
            key=data["key"],
            value=DashboardSnapshot.model_validate(data["value"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


# ==============================================================================
# Backends
# ==============================================================================


@runtime_checkable
class CacheBackend(Protocol):
    async def get(self, key: str) -> CacheEntry | None:
        """Fetch an unexpired entry. Returns None on miss."""
        ...

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        """Store an entry, replacing any previous one."""
        ...

    async def delete(self, key: str) -> None:
        """Evict an entry."""
        ...


class InMemoryCacheBackend:
    """Process-local backend. Expired entries are evicted on read."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis-backed backend shared across API instances.

    Entries are stored as JSON under ``dashboard:snapshot:<scope>`` with
    SETEX, so Redis expires them on its own.
    """

    def __init__(self, redis_client: redis.Redis) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> CacheEntry | None:
        try:
            raw = await self._redis.get(dashboard_cache_key(key))
        except Exception as e:
            raise CacheBackendError(str(e), "get") from e
        if raw is None:
            return None
        try:
            return CacheEntry.from_json(raw)
        except (orjson.JSONDecodeError, KeyError, ValueError, ValidationError) as e:
            raise CacheBackendError(f"Corrupt cache entry: {e}", "decode") from e

    async def set(self, entry: CacheEntry, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(
                dashboard_cache_key(entry.key), ttl_seconds, entry.to_json()
            )
        except Exception as e:
            raise CacheBackendError(str(e), "set") from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(dashboard_cache_key(key))
        except Exception as e:
            raise CacheBackendError(str(e), "delete") from e


# ==============================================================================
# Cache layer
# ==============================================================================


class CacheLayer:
    """Per-scope snapshot memoization with bounded staleness."""

    def __init__(
        self,
        backend: CacheBackend,
        ttl_seconds: int = 300,
        on_recompute: RecomputeHook | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        if ttl_seconds <= 0:
            msg = "ttl_seconds must be positive"
            raise ValueError(msg)
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._on_recompute = on_recompute
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[DashboardSnapshot]] = {}
        self._generations: dict[str, int] = {}

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def set_recompute_hook(self, hook: RecomputeHook | None) -> None:
        self._on_recompute = hook

    def generation(self, scope: Scope) -> int:
        return self._generations.get(scope.key, 0)

    def is_computing(self, scope: Scope) -> bool:
        return scope.key in self._inflight

    async def get(self, scope: Scope, compute: ComputeFn) -> DashboardSnapshot:
        """Return the cached snapshot of a scope, computing it at most once.

        Args:
            scope: Scope to read
            compute: Coroutine factory producing a fresh snapshot

        Returns:
            The cached snapshot, or the result of the single in-flight
            computation for the scope
        """
        key = scope.key

        task = self._inflight.get(key)
        if task is not None:
            return await asyncio.shield(task)

        generation = self._generations.get(key, 0)
        entry = await self._read(key)
        if (
            entry is not None
            and not entry.is_expired(self._clock())
            and self._generations.get(key, 0) == generation
        ):
            return entry.value

        # Another reader may have started the computation while we awaited
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(
                self._recompute(scope, compute, self._generations.get(key, 0)),
                name=f"dashboard-recompute:{key}",
            )
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._detach(k, t))
        return await asyncio.shield(task)

    async def invalidate(self, scope: Scope) -> None:
        """Drop the scope's entry and detach its in-flight computation."""
        key = scope.key
        self._generations[key] = self._generations.get(key, 0) + 1
        self._inflight.pop(key, None)
        try:
            await self._backend.delete(key)
        except Exception as e:
            logger.warning(
                "cache_invalidate_failed",
                scope=key,
                error=str(e),
                error_type=type(e).__name__,
            )
        logger.debug("cache_invalidated", scope=key, generation=self._generations[key])

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _detach(self, key: str, task: asyncio.Task[DashboardSnapshot]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _is_current(self, key: str, generation: int) -> bool:
        return self._generations.get(key, 0) == generation

    async def _read(self, key: str) -> CacheEntry | None:
        try:
            return await self._backend.get(key)
        except Exception as e:
            logger.warning(
                "cache_backend_unavailable",
                scope=key,
                operation="get",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def _recompute(
        self, scope: Scope, compute: ComputeFn, generation: int
    ) -> DashboardSnapshot:
        key = scope.key
        snapshot = await compute()

        if not self._is_current(key, generation):
            logger.debug("cache_result_discarded", scope=key, generation=generation)
            return snapshot

        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=snapshot,
            computed_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
        )
        try:
            await self._backend.set(entry, self._ttl_seconds)
        except Exception as e:
            logger.warning(
                "cache_backend_unavailable",
                scope=key,
                operation="set",
                error=str(e),
                error_type=type(e).__name__,
            )

        if not self._is_current(key, generation):
            # Invalidated while the write was in flight
            await self._evict_quietly(key)
            return snapshot

        logger.debug("cache_recomputed", scope=key, expires_at=entry.expires_at.isoformat())

        if self._on_recompute is not None:
            try:
                await self._on_recompute(scope, snapshot)
            except Exception:
                logger.exception("cache_recompute_hook_failed", scope=key)

        return snapshot

    async def _evict_quietly(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except Exception as e:
            logger.warning("cache_invalidate_failed", scope=key, error=str(e))
