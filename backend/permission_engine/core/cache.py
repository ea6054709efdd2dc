from __future__ import annotations

import fnmatch
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

from fastapi.encoders import jsonable_encoder

from permission_engine.core.config import settings
from permission_engine.core.errors import CacheError
from permission_engine.core.metrics import (
    record_cache_error,
    record_cache_hit,
    record_cache_miss,
    record_cache_set,
)


logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    @property
    def backend_name(self) -> str:
        ...

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        ...

    def delete(self, keys: list[str]) -> int:
        ...

    def clear_pattern(self, pattern: str) -> int:
        ...

    def clear(self) -> None:
        ...


@dataclass
class _CacheEntry:
    expires_at: float | None
    value: str


class InMemoryCache:
    """Process-local backend. The clock is injectable so TTL expiry can be
    driven deterministically in tests."""

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._store: dict[str, _CacheEntry] = {}
        self._clock = clock or time.monotonic

    @property
    def backend_name(self) -> str:
        return "memory"

    def _expired(self, entry: _CacheEntry) -> bool:
        return entry.expires_at is not None and self._clock() >= entry.expires_at

    def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            self._store.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl and ttl > 0 else None
        self._store[key] = _CacheEntry(expires_at=expires_at, value=value)

    def delete(self, keys: list[str]) -> int:
        removed = 0
        for key in keys:
            entry = self._store.pop(key, None)
            if entry is not None and not self._expired(entry):
                removed += 1
        return removed

    def clear_pattern(self, pattern: str) -> int:
        keys = [key for key in self._store if fnmatch.fnmatchcase(key, pattern)]
        return self.delete(keys)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[str]:
        return [key for key, entry in self._store.items() if not self._expired(entry)]


class NullCache:
    @property
    def backend_name(self) -> str:
        return "none"

    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        return None

    def delete(self, keys: list[str]) -> int:
        return 0

    def clear_pattern(self, pattern: str) -> int:
        return 0

    def clear(self) -> None:
        return None


class RedisCache:
    def __init__(self, url: str | None = None, *, client: Any | None = None) -> None:
        import redis

        self._errors = (redis.RedisError,)
        if client is not None:
            self._client = client
        elif url:
            self._client = redis.Redis.from_url(url, decode_responses=True)
        else:
            raise ValueError("RedisCache needs a url or a client")

    @property
    def backend_name(self) -> str:
        return "redis"

    def get(self, key: str) -> str | None:
        try:
            value = self._client.get(key)
        except self._errors as exc:
            raise CacheError(f"redis get failed: {exc}", operation="get") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            if ttl and ttl > 0:
                self._client.setex(key, ttl, value)
            else:
                self._client.set(key, value)
        except self._errors as exc:
            raise CacheError(f"redis set failed: {exc}", operation="set") from exc

    def delete(self, keys: list[str]) -> int:
        if not keys:
            return 0
        try:
            return int(self._client.delete(*keys))
        except self._errors as exc:
            raise CacheError(f"redis delete failed: {exc}", operation="delete") from exc

    def clear_pattern(self, pattern: str) -> int:
        try:
            keys = list(self._client.scan_iter(match=pattern))
        except self._errors as exc:
            raise CacheError(f"redis scan failed: {exc}", operation="clear_pattern") from exc
        return self.delete(keys)

    def clear(self) -> None:
        self.clear_pattern(f"{settings.CACHE_NAMESPACE}:*")


_CACHE_BACKEND: CacheBackend | None = None
_CACHE_SERVICE: "CacheService" | None = None


def _resolve_backend_name() -> str:
    env_override = os.getenv("CACHE_BACKEND")
    if settings.CHAOS_CACHE_DOWN:
        return "none"
    return (env_override or settings.CACHE_BACKEND or "memory").lower()


def build_backend(backend_name: str | None = None) -> CacheBackend:
    name = (backend_name or _resolve_backend_name()).lower()
    if name in {"none", "disabled", "off"}:
        return NullCache()
    if name == "redis":
        if not settings.REDIS_URL:
            logger.warning("Redis cache enabled but REDIS_URL is missing; using memory cache.")
            return InMemoryCache()
        try:
            return RedisCache(settings.REDIS_URL)
        except Exception as exc:
            logger.warning("Failed to initialize Redis cache; using memory cache. %s", exc)
            return InMemoryCache()
    return InMemoryCache()


def _get_backend() -> CacheBackend:
    global _CACHE_BACKEND
    if _CACHE_BACKEND is None:
        _CACHE_BACKEND = build_backend()
    return _CACHE_BACKEND


def _serialize(value: Any) -> str | None:
    try:
        encoded = jsonable_encoder(value)
        return json.dumps(encoded, sort_keys=True, separators=(",", ":"), default=str)
    except Exception:
        logger.warning("cache.serialize_failed", exc_info=True)
        return None


def _deserialize(payload: str) -> Any | None:
    try:
        return json.loads(payload)
    except ValueError:
        return None


class CacheService:
    """
    Thin service wrapper around a cache backend with JSON serialization,
    cache metrics and fail-open semantics: a backend raising CacheError is
    logged and treated as a miss / no-op, never propagated.
    """

    def __init__(
        self,
        *,
        backend: CacheBackend | None = None,
        default_ttl: int | None = None,
    ) -> None:
        self._backend = backend
        self._default_ttl = (
            settings.CACHE_DEFAULT_TTL_SECONDS if default_ttl is None else default_ttl
        )

    @property
    def backend(self) -> CacheBackend:
        return self._backend or _get_backend()

    def _absorb(self, operation: str, exc: Exception, **fields: Any) -> None:
        record_cache_error(operation)
        logger.warning(
            "cache.operation_failed",
            extra={"operation": operation, "error": str(exc), **fields},
        )

    def get(self, key: str, *, cache_name: str = "default") -> Any | None:
        try:
            payload = self.backend.get(key)
        except CacheError as exc:
            self._absorb("get", exc, cache_key=key)
            record_cache_miss(cache_name)
            return None
        if payload is None:
            record_cache_miss(cache_name)
            return None
        value = _deserialize(payload)
        if value is None:
            record_cache_miss(cache_name)
            return None
        record_cache_hit(cache_name)
        return value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: int | None = None,
        cache_name: str = "default",
    ) -> bool:
        payload = _serialize(value)
        if payload is None:
            return False
        effective_ttl = self._default_ttl if ttl is None else ttl
        try:
            self.backend.set(key, payload, ttl=effective_ttl)
        except CacheError as exc:
            self._absorb("set", exc, cache_key=key)
            return False
        record_cache_set(cache_name, len(payload))
        return True

    def delete(self, keys: str | Iterable[str]) -> int:
        key_list = [keys] if isinstance(keys, str) else list(keys)
        if not key_list:
            return 0
        try:
            return self.backend.delete(key_list)
        except CacheError as exc:
            self._absorb("delete", exc, cache_keys=key_list)
            return 0

    def delete_strict(self, keys: str | Iterable[str]) -> int:
        """Like delete, but lets CacheError through for callers that must
        know the eviction happened (the invalidator counts failures)."""
        key_list = [keys] if isinstance(keys, str) else list(keys)
        if not key_list:
            return 0
        return self.backend.delete(key_list)

    def clear_pattern(self, pattern: str) -> int:
        try:
            return self.backend.clear_pattern(pattern)
        except CacheError as exc:
            self._absorb("clear_pattern", exc, pattern=pattern)
            return 0

    def clear_pattern_strict(self, pattern: str) -> int:
        return self.backend.clear_pattern(pattern)

    def clear(self) -> None:
        try:
            self.backend.clear()
        except CacheError as exc:
            self._absorb("clear", exc)


def get_cache_service() -> CacheService:
    global _CACHE_SERVICE
    if _CACHE_SERVICE is None:
        _CACHE_SERVICE = CacheService()
    return _CACHE_SERVICE


def reset_cache_backend() -> None:
    global _CACHE_BACKEND, _CACHE_SERVICE
    _CACHE_BACKEND = None
    _CACHE_SERVICE = None
