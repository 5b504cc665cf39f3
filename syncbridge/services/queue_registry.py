"""
Per-connection write queues and the rate-limited retry executor.

Every upstream write for a connection passes through that connection's
ConnectionQueue, which admits at most `rate_limit_per_min` calls in any
rolling window. Events processed concurrently for the same connection
share one queue, so the cap holds however many events are in flight.

With RATE_LIMIT_BACKEND=redis the window itself lives in a Redis sorted set
per connection, so every worker process draws from the same budget.
"""
import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from syncbridge.utils.errors import UpstreamTimeoutError, is_retriable_error

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 30.0
REDIS_KEY_PREFIX = "syncbridge:ratelimit"

# Evict, count, and admit in one round trip. Returns "0" on admission,
# otherwise the seconds until the oldest member leaves the window.
_ADMIT_SCRIPT = """
local now = tonumber(ARGV[1])
local interval = tonumber(ARGV[2])
redis.call('zremrangebyscore', KEYS[1], '-inf', now - interval)
if redis.call('zcard', KEYS[1]) < tonumber(ARGV[3]) then
    redis.call('zadd', KEYS[1], now, ARGV[4])
    redis.call('pexpire', KEYS[1], math.ceil(interval * 1000) + 1000)
    return '0'
end
local oldest = redis.call('zrange', KEYS[1], 0, 0, 'WITHSCORES')
return tostring(tonumber(oldest[2]) + interval - now)
"""


class LocalWindow:
    """Admission timestamps held in this process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._admitted: deque[float] = deque()

    def count(self, interval_seconds: float) -> int:
        self._evict(self._clock(), interval_seconds)
        return len(self._admitted)

    def _evict(self, now: float, interval_seconds: float) -> None:
        while self._admitted and self._admitted[0] <= now - interval_seconds:
            self._admitted.popleft()

    async def admit(self, key: str, limit: int, interval_seconds: float) -> float:
        """Take a slot and return 0, or return the seconds until one frees up."""
        now = self._clock()
        self._evict(now, interval_seconds)
        if len(self._admitted) < limit:
            self._admitted.append(now)
            return 0.0
        return self._admitted[0] + interval_seconds - now


class RedisWindow:
    """
    Sliding window in a Redis sorted set, one key per connection.
    Shared by every process pointed at the same Redis.
    """

    def __init__(
        self,
        redis_getter: Optional[Callable[[], Awaitable[Any]]] = None,
        clock: Callable[[], float] = time.time,
        prefix: str = REDIS_KEY_PREFIX,
    ):
        self._redis_getter = redis_getter
        self._clock = clock
        self.prefix = prefix

    async def _redis(self):
        if self._redis_getter is not None:
            return await self._redis_getter()
        from syncbridge.utils.redis_client import get_redis
        return await get_redis()

    async def admit(self, key: str, limit: int, interval_seconds: float) -> float:
        redis = await self._redis()
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        result = await redis.eval(
            _ADMIT_SCRIPT, 1, f"{self.prefix}:{key}",
            repr(now), repr(float(interval_seconds)), int(limit), member,
        )
        return float(result)


class ConnectionQueue:
    """
    Sliding-window admission for one connection.

    Callers wait in FIFO order on an asyncio.Lock; the head of the line sleeps
    until the oldest admission leaves the window. When a shared window is set
    it decides admission; a Redis failure falls back to the local window.
    """

    def __init__(
        self,
        connection_id: str,
        rate_limit_per_min: int,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        shared_window: Optional[RedisWindow] = None,
    ):
        self.connection_id = connection_id
        self.rate_limit = max(int(rate_limit_per_min), 1)
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.shared_window = shared_window
        self._local = LocalWindow(clock)
        self._lock = asyncio.Lock()
        self._waiting = 0

    @property
    def waiting(self) -> int:
        return self._waiting

    def in_window(self) -> int:
        """Admissions recorded by the local window."""
        return self._local.count(self.interval_seconds)

    async def _admit(self) -> float:
        if self.shared_window is not None:
            try:
                return await self.shared_window.admit(
                    self.connection_id, self.rate_limit, self.interval_seconds,
                )
            except Exception as e:
                logger.warning(
                    "Shared write window unavailable, using local window: %s", str(e),
                    extra={"connection_id": self.connection_id},
                )
        return await self._local.admit(
            self.connection_id, self.rate_limit, self.interval_seconds,
        )

    async def acquire(self) -> None:
        """Block until a slot in the current window is free, then take it."""
        self._waiting += 1
        try:
            async with self._lock:
                while True:
                    delay = await self._admit()
                    if delay <= 0:
                        return
                    logger.debug(
                        "Write cap reached, waiting %.2fs", delay,
                        extra={"connection_id": self.connection_id},
                    )
                    await asyncio.sleep(max(delay, 0.001))
        finally:
            self._waiting -= 1

    async def run(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Admit one call through the window and bound it by the per-call timeout."""
        await self.acquire()
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise UpstreamTimeoutError(
                f"Upstream call exceeded {self.timeout_seconds:g}s timeout"
            )


class QueueRegistry:
    """Owns the lifecycle of ConnectionQueues, keyed by connection id."""

    def __init__(
        self,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        shared_window: Optional[RedisWindow] = None,
    ):
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.shared_window = shared_window
        self._queues: dict[str, ConnectionQueue] = {}

    def get_or_create(self, connection_id: str, rate_limit_per_min: int) -> ConnectionQueue:
        key = str(connection_id)
        queue = self._queues.get(key)
        if queue is None:
            queue = ConnectionQueue(
                key,
                rate_limit_per_min,
                interval_seconds=self.interval_seconds,
                timeout_seconds=self.timeout_seconds,
                shared_window=self.shared_window,
            )
            self._queues[key] = queue
        elif queue.rate_limit != max(int(rate_limit_per_min), 1):
            # Connection edited since the queue was built
            queue.rate_limit = max(int(rate_limit_per_min), 1)
        return queue

    def clear(self, connection_id: Optional[str] = None) -> None:
        if connection_id is None:
            self._queues.clear()
        else:
            self._queues.pop(str(connection_id), None)

    def __len__(self) -> int:
        return len(self._queues)


def capped_backoff(floor_s: float, cap_s: float):
    """
    tenacity wait: exponential from `floor_s` (factor 2) plus up to `floor_s`
    of jitter, never longer than `cap_s`.
    """
    cap_s = max(cap_s, floor_s)
    combined = wait_exponential(multiplier=floor_s, min=floor_s, max=cap_s) + wait_random(0, floor_s)

    def _wait(retry_state) -> float:
        return min(combined(retry_state), cap_s)

    return _wait


class RateLimitedExecutor:
    """
    Runs `fn(queue)` inside a tenacity retry loop. `fn` sends each upstream
    write through `queue.run(...)` and may be any callable returning an
    awaitable.
    """

    def __init__(
        self,
        registry: QueueRegistry,
        max_backoff_ms: int = 60_000,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.registry = registry
        self.max_backoff_ms = max_backoff_ms
        self._sleep = sleep

    async def execute_with_queue_and_retry(
        self,
        fn: Callable[[ConnectionQueue], Awaitable[Any]],
        *,
        connection_id: str,
        rate_limit_per_min: int,
        max_retries: int,
        retry_backoff_ms: int,
        context: Optional[str] = None,
    ) -> Any:
        """
        Retry `fn` up to `max_retries` times on retriable errors with
        randomized exponential backoff (factor 2, floor retry_backoff_ms,
        ceiling max_backoff_ms). Non-retriable errors abort immediately.
        """
        queue = self.registry.get_or_create(connection_id, rate_limit_per_min)

        floor_s = retry_backoff_ms / 1000.0
        cap_s = self.max_backoff_ms / 1000.0

        def _log_retry(retry_state) -> None:
            logger.warning(
                "Retry attempt failed (%s): %s",
                context or "upstream",
                str(retry_state.outcome.exception()),
                extra={
                    "connection_id": str(connection_id),
                    "attempt": retry_state.attempt_number,
                },
            )

        async def _attempt():
            return await fn(queue)

        kwargs = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(max_retries, 0) + 1),
            wait=capped_backoff(floor_s, cap_s),
            retry=retry_if_exception(is_retriable_error),
            before_sleep=_log_retry,
            reraise=True,
            **kwargs,
        )
        return await retrying(_attempt)


# Process-wide registry (lazily initialized)
_registry: Optional[QueueRegistry] = None


def get_queue_registry() -> QueueRegistry:
    """Registry shared by every batch in this process."""
    global _registry
    if _registry is None:
        from syncbridge.config import get_settings
        settings = get_settings()
        shared_window = RedisWindow() if settings.rate_limit_backend == "redis" else None
        _registry = QueueRegistry(
            interval_seconds=settings.rate_limit_window_seconds,
            timeout_seconds=settings.upstream_timeout_seconds,
            shared_window=shared_window,
        )
    return _registry
