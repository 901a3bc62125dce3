"""
Ephemeral key-value store with TTL.

The cache is the single source of truth for session liveness, login
attempt counters, processing-restriction flags and the recent audit
events ring buffer. Two implementations share one interface:

- ``RedisCache`` for deployments (several workers share state)
- ``InMemoryCache`` for single-process runs and tests

Both support ``atomic_update``: a read-modify-write on one key that
cannot interleave with another update of the same key.
"""

import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, TypeVar

import redis
from loguru import logger

from helpers.time_utils import Clock, utc_now
from models.exceptions import InfrastructureException

R = TypeVar("R")

# Updater contract: receives the current raw value (or None) and returns
# (new value or None to delete the key, TTL seconds or None to keep the
# current TTL, result handed back to the caller).
Updater = Callable[[Optional[str]], tuple[Optional[str], Optional[int], R]]


class CacheStore(ABC):
    """Interface shared by the cache backends."""

    backend_name: str = "abstract"

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    @abstractmethod
    def delete(self, *keys: str) -> int: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def ttl(self, key: str) -> int:
        """Seconds left; -1 when the key has no expiry, -2 when it is missing."""

    @abstractmethod
    def push_capped(self, key: str, value: str, max_length: int) -> None:
        """Prepend to a list and trim it to ``max_length`` entries."""

    @abstractmethod
    def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]: ...

    @abstractmethod
    def atomic_update(self, key: str, updater: Updater[R]) -> R: ...

    @abstractmethod
    def ping(self) -> bool: ...

    def close(self) -> None:
        """Release backend resources."""

    # JSON helpers shared by both backends

    def get_json(self, key: str) -> Any:
        raw = self.get(key)
        return json.loads(raw) if raw is not None else None

    def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value, default=str), ttl_seconds)


@dataclass
class _Entry:
    value: Any  # str for plain keys, list[str] for lists
    expires_at: datetime | None


class InMemoryCache(CacheStore):
    """
    Thread-safe in-process cache.

    State is per instance, never module-global; expiry is evaluated against
    an injectable clock so tests can move time forward.
    """

    backend_name = "memory"

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        return self._clock() + timedelta(seconds=ttl_seconds)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            if entry is None or not isinstance(entry.value, str):
                return None
            return entry.value

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = _Entry(value, self._expiry(ttl_seconds))

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    removed += 1
        return removed

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            return max(0, int((entry.expires_at - self._clock()).total_seconds()))

    def push_capped(self, key: str, value: str, max_length: int) -> None:
        with self._lock:
            entry = self._live(key)
            if entry is None or not isinstance(entry.value, list):
                entry = _Entry([], None)
                self._data[key] = entry
            entry.value.insert(0, value)
            del entry.value[max_length:]

    def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None or not isinstance(entry.value, list):
                return []
            stop = None if end == -1 else end + 1
            return list(entry.value[start:stop])

    def atomic_update(self, key: str, updater: Updater[R]) -> R:
        with self._lock:
            entry = self._live(key)
            current = entry.value if entry is not None and isinstance(entry.value, str) else None
            new_value, ttl_seconds, result = updater(current)
            if new_value is None:
                self._data.pop(key, None)
            else:
                expires_at = (
                    self._expiry(ttl_seconds)
                    if ttl_seconds is not None
                    else (entry.expires_at if entry is not None else None)
                )
                self._data[key] = _Entry(new_value, expires_at)
            return result

    def ping(self) -> bool:
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCache(CacheStore):
    """Redis-backed cache using redis-py with decoded string responses."""

    backend_name = "redis"

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        return cls(
            redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        )

    def _call(self, operation: str, func: Callable[[], R]) -> R:
        try:
            return func()
        except redis.RedisError as e:
            logger.error(f"Redis {operation} failed: {e}")
            raise InfrastructureException("Cache unavailable") from e

    def get(self, key: str) -> str | None:
        return self._call("get", lambda: self.client.get(key))  # type: ignore[return-value]

    def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        if ttl_seconds is None:
            self._call("set", lambda: self.client.set(key, value))
        else:
            self._call("setex", lambda: self.client.setex(key, ttl_seconds, value))

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self._call("delete", lambda: self.client.delete(*keys)))  # type: ignore[arg-type]

    def exists(self, key: str) -> bool:
        return bool(self._call("exists", lambda: self.client.exists(key)))

    def ttl(self, key: str) -> int:
        return int(self._call("ttl", lambda: self.client.ttl(key)))  # type: ignore[arg-type]

    def push_capped(self, key: str, value: str, max_length: int) -> None:
        def _push() -> None:
            pipe = self.client.pipeline()
            pipe.lpush(key, value)
            pipe.ltrim(key, 0, max_length - 1)
            pipe.execute()

        self._call("lpush", _push)

    def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        return list(self._call("lrange", lambda: self.client.lrange(key, start, end)))  # type: ignore[arg-type]

    def atomic_update(self, key: str, updater: Updater[R]) -> R:
        """
        Optimistic WATCH/MULTI transaction; redis-py retries on conflict.
        """

        def _transaction(pipe: redis.client.Pipeline) -> R:
            current = pipe.get(key)
            new_value, ttl_seconds, result = updater(current)  # type: ignore[arg-type]
            remaining = pipe.ttl(key) if ttl_seconds is None else None
            pipe.multi()
            if new_value is None:
                pipe.delete(key)
            elif ttl_seconds is not None:
                pipe.setex(key, ttl_seconds, new_value)
            elif remaining is not None and int(remaining) > 0:  # type: ignore[arg-type]
                pipe.setex(key, int(remaining), new_value)  # type: ignore[arg-type]
            else:
                pipe.set(key, new_value)
            return result

        return self._call(
            "transaction",
            lambda: self.client.transaction(_transaction, key, value_from_callable=True),
        )

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self.client.close()


def build_cache(redis_url: str, clock: Clock = utc_now) -> CacheStore:
    """Redis when a URL is configured, otherwise the in-process cache."""
    if redis_url:
        logger.info("Using Redis cache backend")
        return RedisCache.from_url(redis_url)
    logger.warning("REDIS_URL not set; using in-process cache (single worker only)")
    return InMemoryCache(clock)
