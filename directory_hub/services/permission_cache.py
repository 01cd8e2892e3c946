"""
Permission cache: short-TTL memo for admin / directory-owner checks.

Both checks hit the store on every write request, so results are cached
for ``PERMISSION_CACHE_TTL`` seconds (default 5 minutes) keyed by
``(kind, directory_id | None, email)``:

    ("admin", None, "a@x.com")        → is platform admin
    ("owner", "d1", "o@x.com")        → is owner/admin of directory d1

Invalidation:
  - point deletes when the admins / directory_owners tables change
  - full clear when a directory is deleted

The cache is an optimization only; callers tolerate up to TTL staleness.
It is injectable: the factory stores one instance in
``app.extensions["permission_cache"]`` and tests may swap in
``NullPermissionCache`` or their own implementation.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

from flask import current_app

logger = logging.getLogger(__name__)

CACHE_TTL = 300  # 5 minutes
SWEEP_EVERY = 256  # sets between expired-entry sweeps
MAX_ENTRIES = 10_000

KIND_ADMIN = "admin"
KIND_OWNER = "owner"

CacheKey = tuple[str, Optional[str], str]


def cache_key(kind: str, directory_id: str | None, email: str) -> CacheKey:
    return (kind, directory_id, email.strip().lower())


class PermissionCache(ABC):
    """Interface: get / set / point-invalidate / invalidate-user / clear."""

    @abstractmethod
    def get(self, key: CacheKey) -> Optional[bool]:
        """Return the cached decision, or None on miss/expiry."""

    @abstractmethod
    def set(self, key: CacheKey, allowed: bool) -> None:
        ...

    @abstractmethod
    def invalidate(self, key: CacheKey) -> None:
        ...

    @abstractmethod
    def invalidate_user(self, email: str) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class TTLPermissionCache(PermissionCache):
    """Thread-safe in-process TTL map.

    Expired entries are dropped on read and by a sweep every
    ``sweep_every`` writes.  At ``max_entries`` the oldest entry is evicted,
    so the map stays bounded however many distinct emails are checked.
    """

    def __init__(
        self,
        ttl: int = CACHE_TTL,
        clock=time.monotonic,
        max_entries: int = MAX_ENTRIES,
        sweep_every: int = SWEEP_EVERY,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.sweep_every = sweep_every
        self._clock = clock
        # Kept in write order: set() re-inserts, so the first key is the oldest
        self._entries: dict[CacheKey, tuple[float, bool]] = {}
        self._writes = 0
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[bool]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            cached_at, allowed = entry
            if self._clock() - cached_at > self.ttl:
                del self._entries[key]
                return None
            return allowed

    def set(self, key: CacheKey, allowed: bool) -> None:
        with self._lock:
            now = self._clock()
            self._writes += 1
            self._entries.pop(key, None)
            if self._writes % self.sweep_every == 0 or len(self._entries) >= self.max_entries:
                self._sweep(now)
            while len(self._entries) >= self.max_entries:
                del self._entries[next(iter(self._entries))]
            self._entries[key] = (now, allowed)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (cached_at, _) in self._entries.items() if now - cached_at > self.ttl]
        for k in expired:
            del self._entries[k]
        if expired:
            logger.debug("Permission cache sweep dropped %d expired entries", len(expired))

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_user(self, email: str) -> None:
        email = email.strip().lower()
        with self._lock:
            keys = [k for k in self._entries if k[2] == email]
            for k in keys:
                self._entries.pop(k, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullPermissionCache(PermissionCache):
    """Never caches; every check re-queries the store."""

    def get(self, key: CacheKey) -> Optional[bool]:
        return None

    def set(self, key: CacheKey, allowed: bool) -> None:
        return None

    def invalidate(self, key: CacheKey) -> None:
        return None

    def invalidate_user(self, email: str) -> None:
        return None

    def clear(self) -> None:
        return None


def init_permission_cache(app, cache: PermissionCache | None = None) -> PermissionCache:
    """Attach the permission cache to *app* (TTL 0 selects the null cache)."""
    if cache is None:
        ttl = int(app.config.get("PERMISSION_CACHE_TTL", CACHE_TTL))
        cache = TTLPermissionCache(ttl) if ttl > 0 else NullPermissionCache()
    app.extensions["permission_cache"] = cache
    logger.debug("Permission cache: %s", type(cache).__name__)
    return cache


def get_permission_cache() -> PermissionCache:
    return current_app.extensions["permission_cache"]
