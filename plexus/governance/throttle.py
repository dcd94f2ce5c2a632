"""Short-window request throttle, one counter per identity and operation class."""
from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Protocol, Tuple, Union

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..config import Settings
from ..logging_config import logger
from ..models.schemas import OperationClass

Operation = Union[OperationClass, str]


@dataclass
class RateWindow:
    count: int
    reset_at: float


@dataclass(frozen=True)
class OperationLimit:
    window_seconds: float
    max_requests: int


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    remaining: int
    reset_time: float

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_time - now))


class WindowStore(Protocol):
    async def hit(self, identity: str, operation: str, window_seconds: float, max_requests: int, now: float) -> ThrottleDecision:
        ...

    async def sweep(self, now: float) -> int:
        ...

    async def close(self) -> None:
        ...


class MemoryWindowStore:
    """Process-local fixed windows.

    Concurrent callers on other processes each keep their own map, so a burst spread
    across workers can exceed ``max_requests``.
    """

    def __init__(self) -> None:
        self._windows: Dict[Tuple[str, str], RateWindow] = {}
        self._lock = asyncio.Lock()

    async def hit(self, identity: str, operation: str, window_seconds: float, max_requests: int, now: float) -> ThrottleDecision:
        key = (identity, operation)
        async with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = RateWindow(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return ThrottleDecision(allowed=True, remaining=max_requests - 1, reset_time=window.reset_at)
            if window.count >= max_requests:
                return ThrottleDecision(allowed=False, remaining=0, reset_time=window.reset_at)
            window.count += 1
            return ThrottleDecision(allowed=True, remaining=max_requests - window.count, reset_time=window.reset_at)

    async def sweep(self, now: float) -> int:
        async with self._lock:
            expired = [key for key, window in self._windows.items() if now >= window.reset_at]
            for key in expired:
                self._windows.pop(key, None)
            return len(expired)

    def window(self, identity: str, operation: str) -> Optional[RateWindow]:
        return self._windows.get((identity, operation))

    def __len__(self) -> int:
        return len(self._windows)

    async def close(self) -> None:
        self._windows.clear()


class RedisWindowStore:
    """Shared windows backed by Redis ``INCR``, falling back to a local map when Redis is down."""

    def __init__(self, url: str, fallback: MemoryWindowStore | None = None, client: Redis | None = None) -> None:
        self._url = url
        self._redis: Redis | None = client
        self._connect_attempted = client is not None
        self._fallback = fallback if fallback is not None else MemoryWindowStore()

    async def init(self) -> None:
        if self._redis is not None or self._connect_attempted:
            return
        self._connect_attempted = True
        try:
            self._redis = Redis.from_url(self._url, encoding="utf-8", decode_responses=True)
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            logger.warning("throttle.redis_unavailable", url=self._url, reason=str(exc))
            if self._redis is not None:
                await self._redis.aclose()
            self._redis = None

    async def hit(self, identity: str, operation: str, window_seconds: float, max_requests: int, now: float) -> ThrottleDecision:
        await self.init()
        if self._redis is not None:
            key = f"throttle:{operation}:{identity}"
            window_ms = max(1, int(window_seconds * 1000))
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.incr(key)
                    pipe.pttl(key)
                    count, ttl_ms = await pipe.execute()
                if ttl_ms < 0:
                    await self._redis.pexpire(key, window_ms)
                    ttl_ms = window_ms
                reset_at = now + ttl_ms / 1000
                if count > max_requests:
                    return ThrottleDecision(allowed=False, remaining=0, reset_time=reset_at)
                return ThrottleDecision(allowed=True, remaining=max_requests - count, reset_time=reset_at)
            except (RedisError, OSError) as exc:
                logger.warning("throttle.redis_error", key=key, reason=str(exc))
        return await self._fallback.hit(identity, operation, window_seconds, max_requests, now)

    async def sweep(self, now: float) -> int:
        # Redis expires its own keys; only the fallback map needs collecting.
        return await self._fallback.sweep(now)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await self._fallback.close()


def limits_from_settings(settings: Settings) -> Dict[OperationClass, OperationLimit]:
    return {
        operation: OperationLimit(
            window_seconds=getattr(settings, f"{operation.value}_window_seconds"),
            max_requests=getattr(settings, f"{operation.value}_max_requests"),
        )
        for operation in OperationClass
    }


def _operation_key(operation: Operation) -> str:
    return operation.value if isinstance(operation, OperationClass) else str(operation)


class RequestThrottle:
    """Per-process admission throttle with a background sweep of expired windows.

    Construct one per application, call :meth:`start` once an event loop is running and
    :meth:`stop` at shutdown.
    """

    def __init__(
        self,
        limits: Mapping[OperationClass, OperationLimit],
        store: WindowStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 300.0,
    ) -> None:
        self.limits = dict(limits)
        self.store: WindowStore = store if store is not None else MemoryWindowStore()
        self.clock = clock
        self.sweep_interval_seconds = sweep_interval_seconds
        self._sweeper: asyncio.Task | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RequestThrottle":
        store: WindowStore
        if settings.throttle_backend == "redis":
            store = RedisWindowStore(str(settings.redis_url))
        else:
            store = MemoryWindowStore()
        return cls(
            limits_from_settings(settings),
            store,
            sweep_interval_seconds=settings.throttle_sweep_interval_seconds,
            **kwargs,
        )

    async def check_limit(self, identity: str, operation: Operation, window_seconds: float, max_requests: int) -> ThrottleDecision:
        operation_key = _operation_key(operation)
        decision = await self.store.hit(identity, operation_key, window_seconds, max_requests, self.clock())
        if not decision.allowed:
            logger.warning("throttle.denied", identity=identity, operation=operation_key, reset_time=decision.reset_time)
        return decision

    async def check(self, identity: str, operation: OperationClass) -> ThrottleDecision:
        limit = self.limits[operation]
        return await self.check_limit(identity, operation, limit.window_seconds, limit.max_requests)

    async def sweep(self) -> int:
        removed = await self.store.sweep(self.clock())
        if removed:
            logger.info("throttle.sweep", removed=removed)
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            await self.sweep()

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.store.close()
