"""
PIN failure counters.

Consecutive PIN mismatches are counted per claim code. The memory backend is
process-local (dev and tests); the redis backend shares counts between API
instances. A count lapses ``window_seconds`` after the most recent failure.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

import redis

from slipsafe.core.config import settings


class AttemptCounter(Protocol):
    def get(self, key: str) -> int: ...

    def increment(self, key: str) -> int: ...

    def reset(self, key: str) -> None: ...


class MemoryAttemptCounter:
    def __init__(
        self, *, window_seconds: int, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._counts: dict[str, tuple[int, float]] = {}

    def get(self, key: str) -> int:
        with self._lock:
            return self._live(key)

    def increment(self, key: str) -> int:
        with self._lock:
            count = self._live(key) + 1
            self._counts[key] = (count, self._clock() + self._window_seconds)
            return count

    def reset(self, key: str) -> None:
        with self._lock:
            self._counts.pop(key, None)

    def _live(self, key: str) -> int:
        entry = self._counts.get(key)
        if entry is None:
            return 0
        count, expires_at = entry
        if self._clock() >= expires_at:
            del self._counts[key]
            return 0
        return count


class RedisAttemptCounter:
    def __init__(
        self,
        client: redis.Redis,
        *,
        window_seconds: int,
        prefix: str = "slipsafe:pin-failures:",
    ) -> None:
        self._client = client
        self._window_seconds = window_seconds
        self._prefix = prefix

    def get(self, key: str) -> int:
        value = self._client.get(self._prefix + key)
        return int(value) if value is not None else 0

    def increment(self, key: str) -> int:
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(self._prefix + key)
        pipe.expire(self._prefix + key, self._window_seconds)
        count, _ = pipe.execute()
        return int(count)

    def reset(self, key: str) -> None:
        self._client.delete(self._prefix + key)


_counter: AttemptCounter | None = None


def get_attempt_counter() -> AttemptCounter:
    global _counter  # noqa: PLW0603
    if _counter is not None:
        return _counter
    if settings.attempt_counter_backend == "redis":
        _counter = RedisAttemptCounter(
            redis.Redis.from_url(settings.redis_url),
            window_seconds=settings.pin_lockout_seconds,
        )
    else:
        _counter = MemoryAttemptCounter(window_seconds=settings.pin_lockout_seconds)
    return _counter


def set_attempt_counter(counter: AttemptCounter | None) -> None:
    global _counter  # noqa: PLW0603
    _counter = counter
