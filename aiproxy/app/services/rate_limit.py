"""Per-client rate limiting.

Fixed-window counters keyed by client key. Two backends are provided:

- ``InMemoryRateLimiter`` for single-instance deployments
- ``RedisRateLimiter`` for deployments with several proxy instances, where
  every instance must enforce the same ceiling

The check and the increment of a window are always one atomic step, so two
concurrent requests can never both take the last slot of a window.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import redis
import redis.asyncio as aioredis

from aiproxy.app.core.config import Settings, settings as default_settings
from aiproxy.app.core.logging import get_logger

logger = get_logger(__name__)

REDIS_EXCEPTIONS = (redis.RedisError, OSError)


@dataclass(frozen=True)
class Admitted:
    """The request may proceed."""
    limit: int
    remaining: int
    reset_after: float
    admitted: bool = True


@dataclass(frozen=True)
class Rejected:
    """The client key has no slots left in its current window."""
    limit: int
    retry_after: int
    admitted: bool = False


Admission = Union[Admitted, Rejected]


def _retry_after(seconds: float) -> int:
    """Whole seconds to wait, never less than one."""
    return max(1, math.ceil(seconds))


@dataclass
class RateLimitWindow:
    """Counter state for one client key."""
    count: int
    window_start: float
    last_seen: float


class RateLimitBackend(ABC):
    """Abstract base class for rate limit backends."""

    @abstractmethod
    async def admit(self, key: str) -> Admission:
        """Admit or reject one request for ``key``."""

    @abstractmethod
    async def cleanup(self) -> int:
        """Drop state for idle keys. Returns how many entries were removed."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryRateLimiter(RateLimitBackend):
    """In-memory fixed-window rate limiter.

    Memory is bounded two ways: idle windows are dropped by ``cleanup()``,
    and the store never holds more than ``max_entries`` keys (least
    recently used keys are evicted first).
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        ceiling: int,
        window_seconds: float,
        idle_ttl_seconds: Optional[float] = None,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            ceiling: Requests admitted per window
            window_seconds: Window length in seconds
            idle_ttl_seconds: Inactivity after which a window is dropped
                (defaults to the window length)
            max_entries: Maximum number of keys kept (LRU eviction)
            clock: Monotonic time source, injectable for tests
        """
        self.ceiling = ceiling
        self.window_seconds = window_seconds
        self.idle_ttl_seconds = max(idle_ttl_seconds or window_seconds, window_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._windows: OrderedDict[str, RateLimitWindow] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def get_window(self, key: str) -> Optional[RateLimitWindow]:
        return self._windows.get(key)

    def _evict_lru(self) -> None:
        while len(self._windows) >= self._max_entries:
            key, _ = self._windows.popitem(last=False)
            logger.debug(f"Evicted rate limit window for {key}")

    async def admit(self, key: str) -> Admission:
        # No await inside the critical section: lookup, reset and increment
        # happen as one step for the key.
        async with self._lock:
            now = self._clock()
            window = self._windows.get(key)

            if window is None or now - window.window_start >= self.window_seconds:
                if window is None:
                    self._evict_lru()
                window = RateLimitWindow(count=1, window_start=now, last_seen=now)
                self._windows[key] = window
                self._windows.move_to_end(key)
                return Admitted(
                    limit=self.ceiling,
                    remaining=self.ceiling - 1,
                    reset_after=self.window_seconds,
                )

            window.last_seen = now
            self._windows.move_to_end(key)
            reset_after = window.window_start + self.window_seconds - now

            if window.count >= self.ceiling:
                return Rejected(limit=self.ceiling, retry_after=_retry_after(reset_after))

            window.count += 1
            return Admitted(
                limit=self.ceiling,
                remaining=self.ceiling - window.count,
                reset_after=reset_after,
            )

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                key for key, window in self._windows.items()
                if now - window.window_start >= self.window_seconds
                and now - window.last_seen >= self.idle_ttl_seconds
            ]
            for key in expired:
                del self._windows[key]
            return len(expired)


# Atomic fixed-window check-and-increment.
# Returns {1, count, pttl} when admitted and {0, count, pttl} when rejected.
# The counter is only incremented on admission, so it never exceeds the ceiling.
ADMIT_SCRIPT = """
    local key = KEYS[1]
    local ceiling = tonumber(ARGV[1])
    local window_ms = tonumber(ARGV[2])

    local current = tonumber(redis.call('GET', key) or '0')
    local ttl = redis.call('PTTL', key)

    if current == 0 or ttl < 0 then
        redis.call('SET', key, 1, 'PX', window_ms)
        return {1, 1, window_ms}
    end

    if current >= ceiling then
        return {0, current, ttl}
    end

    local count = redis.call('INCR', key)
    return {1, count, ttl}
"""


class RedisRateLimiter(RateLimitBackend):
    """Redis-based distributed rate limiter.

    Each client key maps to one Redis counter that expires with its window,
    so idle keys are collected by Redis itself.
    """

    def __init__(
        self,
        ceiling: int,
        window_seconds: float,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: str = "aiproxy:ratelimit",
        fail_closed: bool = False,
    ):
        """Initialize Redis rate limiter.

        Args:
            ceiling: Requests admitted per window
            window_seconds: Window length in seconds
            redis_client: Optional ``redis.asyncio`` client instance
            redis_url: Redis connection URL, used when no client is given
            key_prefix: Namespace for rate limit keys
            fail_closed: Reject requests while Redis is unavailable
        """
        self.ceiling = ceiling
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.fail_closed = fail_closed
        self._redis_url = redis_url or default_settings.redis_url
        self._redis = redis_client
        self._script: Optional[Any] = None

    def _get_redis(self) -> Any:
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    def _get_script(self) -> Any:
        if self._script is None:
            self._script = self._get_redis().register_script(ADMIT_SCRIPT)
        return self._script

    async def admit(self, key: str) -> Admission:
        window_ms = int(self.window_seconds * 1000)
        try:
            allowed, count, ttl_ms = await self._get_script()(
                keys=[f"{self.key_prefix}:{key}"],
                args=[self.ceiling, window_ms],
            )
        except REDIS_EXCEPTIONS as e:
            if self.fail_closed:
                logger.error(f"Redis rate limiter unavailable, rejecting: {e}")
                return Rejected(limit=self.ceiling, retry_after=_retry_after(self.window_seconds))
            logger.warning(f"Redis rate limiter unavailable, admitting: {e}")
            return Admitted(limit=self.ceiling, remaining=0, reset_after=self.window_seconds)

        count = int(count)
        reset_after = max(int(ttl_ms), 0) / 1000
        if int(allowed) == 1:
            return Admitted(
                limit=self.ceiling,
                remaining=max(self.ceiling - count, 0),
                reset_after=reset_after,
            )
        return Rejected(limit=self.ceiling, retry_after=_retry_after(reset_after))

    async def cleanup(self) -> int:
        # Keys carry their own expiry.
        return 0

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._script = None


class RateLimiter:
    """Rate limiter facade that selects the backend and sweeps idle state.

    Usage:
        limiter = RateLimiter.from_settings(settings)
        await limiter.start()
        decision = await limiter.admit(client_key)
        await limiter.stop()
    """

    def __init__(self, backend: RateLimitBackend, cleanup_interval: float = 60.0):
        self._backend = backend
        self._cleanup_interval = cleanup_interval
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RateLimiter":
        settings = settings or default_settings
        backend: RateLimitBackend
        if settings.redis_enabled:
            backend = RedisRateLimiter(
                ceiling=settings.rate_limit_ceiling,
                window_seconds=settings.rate_limit_window_seconds,
                redis_url=settings.redis_url,
                key_prefix=settings.rate_limit_key_prefix,
                fail_closed=settings.rate_limit_fail_closed,
            )
            logger.info("Using Redis rate limiter backend")
        else:
            backend = InMemoryRateLimiter(
                ceiling=settings.rate_limit_ceiling,
                window_seconds=settings.rate_limit_window_seconds,
                idle_ttl_seconds=settings.rate_limit_idle_ttl_seconds,
                max_entries=settings.rate_limit_max_entries,
            )
            logger.debug("Using in-memory rate limiter backend")
        return cls(backend, cleanup_interval=settings.rate_limit_cleanup_interval_seconds)

    @property
    def backend(self) -> RateLimitBackend:
        return self._backend

    @property
    def running(self) -> bool:
        return self._task is not None

    async def admit(self, key: str) -> Admission:
        return await self._backend.admit(key)

    async def cleanup(self) -> int:
        return await self._backend.cleanup()

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_cleanup())
        logger.info(f"Started rate limit cleanup (interval: {self._cleanup_interval}s)")

    async def stop(self) -> None:
        """Stop the cleanup task and close the backend."""
        if self._task is not None:
            self._stop_event.set()
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Rate limit cleanup did not stop gracefully, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            finally:
                self._task = None
        await self._backend.close()

    async def _run_cleanup(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._cleanup_interval)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                removed = await self._backend.cleanup()
                if removed:
                    logger.debug(f"Removed {removed} idle rate limit windows")
            except Exception as e:
                logger.error(f"Error during rate limit cleanup: {e}")
