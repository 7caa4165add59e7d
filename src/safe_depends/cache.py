"""Short-lived cache of resolution results in front of the resolver."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import redis

from .models import ResolutionResult
from .severity import Severity

if TYPE_CHECKING:
    from .db import DBStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "latest-safe-version"


class CacheStore(ABC):
    """A byte-oriented key/value store with per-key expiry."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return the value stored at `key`, or None on a miss."""
        raise NotImplementedError

    @abstractmethod
    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Store `value` at `key` for `ttl_seconds`."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, *keys: str) -> bool:
        """Delete `keys`; deleting a missing key is not an error."""
        raise NotImplementedError


class NullCacheStore(CacheStore):
    """Stands in when no cache is configured: every lookup misses."""

    def get(self, key: str) -> bytes | None:  # noqa: ARG002
        """Always miss."""
        return None

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:  # noqa: ARG002
        """Discard the value."""
        return False

    def delete(self, *keys: str) -> bool:  # noqa: ARG002
        """Nothing to delete."""
        return False


class InMemoryCacheStore(CacheStore):
    """Process-local cache store."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._entries: dict[str, tuple[float, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> bytes | None:
        """Return the value at `key` unless it expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Store `value` at `key` for `ttl_seconds`."""
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl_seconds, value)
        return True

    def delete(self, *keys: str) -> bool:
        """Delete `keys`."""
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)
        return True

    def __len__(self) -> int:
        """Return the number of entries, including expired ones not yet evicted."""
        return len(self._entries)


class RedisCacheStore(CacheStore):
    """Cache store backed by Redis."""

    def __init__(self, url: str, timeout: float = 2.0) -> None:
        """Connect lazily to the Redis server at `url`."""
        self.url = url
        self.client = redis.Redis.from_url(url, socket_timeout=timeout, socket_connect_timeout=timeout)

    def get(self, key: str) -> bytes | None:
        """Return the value stored at `key`."""
        return self.client.get(key)  # type: ignore[return-value]

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        """Store `value` at `key` for `ttl_seconds`."""
        return bool(self.client.setex(key, ttl_seconds, value))

    def delete(self, *keys: str) -> bool:
        """Delete `keys`."""
        if not keys:
            return True
        self.client.delete(*keys)
        return True


def cache_store_from_url(url: str | None, timeout: float = 2.0) -> CacheStore:
    """Build the cache store configured by `url`; no URL means no caching."""
    if not url:
        logger.info("No result cache configured; every resolution is computed")
        return NullCacheStore()
    if url == "memory://":
        return InMemoryCacheStore()
    try:
        return RedisCacheStore(url, timeout=timeout)
    except ValueError as e:
        logger.warning("Invalid cache URL %s, caching is disabled: %s", url, e)
        return NullCacheStore()


def cache_key(
    organization_id: int,
    project_id: int,
    project_dependency_id: int,
    severity: str | Severity,
    exclude_banned: bool,  # noqa: FBT001
) -> str:
    """Return the cache key of one resolution request."""
    return (
        f"{KEY_PREFIX}:{organization_id}:{project_id}:{project_dependency_id}:"
        f"{Severity.parse(severity)!s}:{str(exclude_banned).lower()}"
    )


class ResultCache:
    """Read-through cache of `ResolutionResult`s.

    Failures of the underlying store are logged and otherwise ignored: a
    broken cache behaves like an empty one.
    """

    def __init__(self, store: CacheStore | None = None, ttl_seconds: int = 600) -> None:
        """Initialize the cache."""
        self.store: CacheStore = store if store is not None else NullCacheStore()
        self.ttl_seconds = ttl_seconds

    def get(self, key: str) -> ResolutionResult | None:
        """Return the cached result at `key`, or None."""
        try:
            data = self.store.get(key)
            if data is None:
                return None
            return ResolutionResult.loads(data)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to get cached value for key %s: %s", key, e)
            return None

    def put(self, key: str, result: ResolutionResult) -> bool:
        """Cache `result` at `key`. Returns whether it was stored."""
        try:
            return self.store.set_with_ttl(key, result.dumps().encode(), self.ttl_seconds)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to set cached value for key %s: %s", key, e)
            return False

    def invalidate(self, organization_id: int, project_id: int, project_dependency_id: int) -> None:
        """Drop the cached results of a project dependency for every severity and banned-version setting."""
        keys = [
            cache_key(organization_id, project_id, project_dependency_id, severity, exclude_banned)
            for severity in Severity
            for exclude_banned in (True, False)
        ]
        try:
            self.store.delete(*keys)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to invalidate latest safe version cache: %s", e)

    def invalidate_dependency(self, db: DBStore, dependency_id: int) -> int:
        """Drop the cached results of every project dependency on a package.

        Call this after changing the package's advisories, banned versions or
        supply-chain check statuses.

        Returns:
            the number of project dependencies invalidated

        """
        project_dependencies = db.project_dependencies_using(dependency_id)
        for pd in project_dependencies:
            self.invalidate(pd.organization_id, pd.project_id, pd.id)
        return len(project_dependencies)
