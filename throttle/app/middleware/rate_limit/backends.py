"""Counter backends for the rate limiting middleware.

A counter backend owns one integer per (limiter, classification, window)
and hands back the running count after each increment. Keys expire on
their own once the window is over; the middleware never deletes them.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple

from starlette.concurrency import run_in_threadpool

KEY_PREFIX = "throttle"


def counter_key(name: str, classification: str, epoch: int) -> str:
    """Build the store key for one limiter, classification and window."""
    return f"{KEY_PREFIX}/{name}/{classification}/{int(epoch)}"


class Counter(ABC):
    """Abstract base class for counter backends.

    Custom counters don't have to inherit from this class; any object with
    an ``increment(classification, epoch)`` method (plain or coroutine)
    that returns the count after incrementing will do. Implementations must
    be safe for concurrent use.
    """

    @abstractmethod
    async def increment(self, classification: str, epoch: int) -> int:
        """Increment the request counter and return the current count.

        Args:
            classification: Request classification (IP, API token, ...)
            epoch: End of the current window as a UNIX timestamp

        Returns:
            Counter value after the increment
        """
        pass


class MemcachedCounter(Counter):
    """Counter backed by memcached-style ``incr`` and ``add``.

    ``incr`` doesn't create missing keys, so the first request in a window
    adds the key with an expiry. Two racing first requests are told apart
    by ``add``, which only succeeds for one of them.

    Works with blocking clients such as ``pymemcache`` (driven from the
    thread pool) as well as clients whose methods are coroutines.
    """

    def __init__(self, cache: Any, name: str, period: int):
        """Initialize memcached counter.

        Args:
            cache: Memcached client exposing incr() and add()
            name: Limiter name, part of every key
            period: Window length in seconds, used as key expiry
        """
        self._cache = cache
        self._name = name
        self._period = period

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        func = getattr(self._cache, method)
        if inspect.iscoroutinefunction(func):
            return await func(*args, **kwargs)
        return await run_in_threadpool(func, *args, **kwargs)

    async def increment(self, classification: str, epoch: int) -> int:
        key = counter_key(self._name, classification, epoch)

        # Try to increment the counter if it's present.
        count = await self._call("incr", key, 1)
        if count is not None:
            return int(count)

        # If not, add the counter and set expiry.
        if await self._call("add", key, 1, expire=self._period, noreply=False):
            return 1

        # If adding failed, someone else added it concurrently. Increment.
        return int(await self._call("incr", key, 1))


class RedisCounter(Counter):
    """Counter backed by a Redis ``MULTI``/``EXEC`` transaction.

    INCR and EXPIRE run in one transaction, so the TTL is refreshed on
    every hit and nothing interleaves between the two commands.
    """

    def __init__(self, redis_client: Any, name: str, period: int):
        """Initialize Redis counter.

        Args:
            redis_client: ``redis.asyncio`` client instance
            name: Limiter name, part of every key
            period: Window length in seconds, used as key expiry
        """
        self._redis = redis_client
        self._name = name
        self._period = period

    async def increment(self, classification: str, epoch: int) -> int:
        key = counter_key(self._name, classification, epoch)

        pipe = self._redis.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, self._period)

        # Returns [count, expire_ok]; the count is all we need.
        results = await pipe.execute()
        return int(results[0])


class MemoryCounter(Counter):
    """In-process counter for single-instance deployments and tests.

    Not shared between workers: each process enforces its own limits.
    Windows ending before the one being incremented are dropped.
    """

    def __init__(self):
        self._counts: Dict[Tuple[str, int], int] = {}
        self._lock = asyncio.Lock()

    def _prune(self, epoch: int) -> None:
        expired = [key for key in self._counts if key[1] < epoch]
        for key in expired:
            del self._counts[key]

    async def increment(self, classification: str, epoch: int) -> int:
        async with self._lock:
            self._prune(int(epoch))
            key = (classification, int(epoch))
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    def __len__(self) -> int:
        return len(self._counts)
