"""Key/value caches: a no-op cache, an in-memory cache and a Redis-backed cache."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Optional, Union

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

TTL = Union[float, int, timedelta]

_DEFAULT_REDIS_PORT = 6379
_DEFAULT_MIN_RETRY_BACKOFF = 0.008
_DEFAULT_MAX_RETRY_BACKOFF = 0.512


class CacheMissError(LookupError):
    """Raised when a key is absent from the cache or has expired."""

    def __init__(self, key: str) -> None:
        super().__init__(f"key not found: {key}")
        self.key = key


def _to_seconds(value: Optional[TTL]) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class Cache(ABC):
    """Interface every cache engine provides."""

    @abstractmethod
    def get(self, key: str) -> str: ...

    @abstractmethod
    def set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def set_ttl(self, key: str, value: str, ttl: TTL) -> None: ...

    @abstractmethod
    def shutdown(self) -> None: ...


class NoopCache(Cache):
    """Cache that stores nothing and always returns an empty string."""

    def get(self, key: str) -> str:
        return ""

    def set(self, key: str, value: str) -> None:
        return None

    def set_ttl(self, key: str, value: str, ttl: TTL) -> None:
        return None

    def shutdown(self) -> None:
        return None


class MemoryCache(Cache):
    """Thread-safe in-process cache with optional per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def get(self, key: str) -> str:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                raise CacheMissError(key)
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                raise CacheMissError(key)
            return value

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = (value, None)

    def set_ttl(self, key: str, value: str, ttl: TTL) -> None:
        seconds = _to_seconds(ttl)
        with self._lock:
            expires_at = self._clock() + seconds if seconds > 0 else None
            self._data[key] = (value, expires_at)

    def shutdown(self) -> None:
        with self._lock:
            self._data.clear()


class RedisCache(Cache):
    """Cache backed by a Redis server.

    Options without a counterpart in redis-py are recorded in ``options`` only.
    A ready client may be passed as ``client``.
    """

    OPTION_NAMES = frozenset(
        {
            "client_name",
            "username",
            "password",
            "max_retries",
            "min_retry_backoff",
            "max_retry_backoff",
            "dial_timeout",
            "read_timeout",
            "write_timeout",
            "context_timeout_enabled",
            "pool_size",
            "pool_timeout",
            "min_idle_conns",
            "max_idle_conns",
            "max_active_conns",
            "conn_max_idle_time",
            "conn_max_lifetime",
        }
    )

    def __init__(self, host: str, db: int = 0, **kwargs: Any) -> None:
        client = kwargs.pop("client", None)
        unknown = set(kwargs) - self.OPTION_NAMES
        if unknown:
            raise TypeError(f"unknown redis options: {', '.join(sorted(unknown))}")
        self.options = dict(kwargs)
        self._client = client if client is not None else self._build_client(host, db, kwargs)
        self._client.ping()

    @staticmethod
    def _build_client(host: str, db: int, options: dict[str, Any]) -> redis.Redis:
        if ":" in host:
            host_name, port_text = host.rsplit(":", 1)
            port = int(port_text)
        else:
            host_name, port = host, _DEFAULT_REDIS_PORT
        retry = None
        if "max_retries" in options:
            backoff = ExponentialBackoff(
                cap=_to_seconds(options.get("max_retry_backoff", _DEFAULT_MAX_RETRY_BACKOFF)),
                base=_to_seconds(options.get("min_retry_backoff", _DEFAULT_MIN_RETRY_BACKOFF)),
            )
            retry = Retry(backoff, max(0, int(options["max_retries"])))
        io_timeout = options.get("read_timeout", options.get("write_timeout"))
        return redis.Redis(
            host=host_name or "localhost",
            port=port,
            db=db,
            username=options.get("username") or None,
            password=options.get("password") or None,
            client_name=options.get("client_name") or None,
            socket_connect_timeout=(
                _to_seconds(options["dial_timeout"]) if "dial_timeout" in options else None
            ),
            socket_timeout=_to_seconds(io_timeout) if io_timeout is not None else None,
            max_connections=options.get("pool_size") or None,
            retry=retry,
            decode_responses=True,
        )

    def get(self, key: str) -> str:
        value = self._client.get(key)
        if value is None:
            raise CacheMissError(key)
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str) -> None:
        self.set_ttl(key, value, 0)

    def set_ttl(self, key: str, value: str, ttl: TTL) -> None:
        milliseconds = int(_to_seconds(ttl) * 1000)
        if milliseconds > 0:
            self._client.set(key, value, px=milliseconds)
        else:
            self._client.set(key, value)

    def shutdown(self) -> None:
        self._client.close()