# src/rowgate/core/cache.py
"""In-memory TTL cache with pattern invalidation.

Read paths of the CRUD engine consult this cache first; write paths call
invalidate() with a key-family prefix after the write succeeds.

Keys are hierarchical:

    rowstore:<spreadsheet_id>:<sheet>:<resource>[:<detail>]

so invalidating ``rowstore:<spreadsheet_id>:<sheet>:`` drops every cached
view derived from that sheet. Patterns containing glob characters are
matched with fnmatch instead of as a prefix.

Lost invalidations: a reader that misses, fetches for a while, and then
stores its result could overwrite a newer invalidation with stale data.
Readers take snapshot() before fetching and pass it to set(since=...); the
set is dropped if a matching invalidation happened in between.
"""

from __future__ import annotations

import time
from collections import OrderedDict, deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from fnmatch import fnmatchcase
from threading import Lock
from typing import Any

import structlog

from rowgate.contracts.enums import ResourceClass

logger = structlog.get_logger(__name__)

_GLOB_CHARS = frozenset("*?[")

# Bounded invalidation log; a snapshot older than the oldest entry kept is
# treated as stale.
_INVALIDATION_LOG_SIZE = 1024


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Cache entry. Expired once ``now - inserted_at > ttl``."""

    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at > self.ttl


def _matches(key: str, pattern: str) -> bool:
    if _GLOB_CHARS.intersection(pattern):
        return fnmatchcase(key, pattern)
    return key.startswith(pattern)


class RowCache:
    """Thread-safe TTL cache with size bound and pattern invalidation.

    - Oldest entries are evicted first once max_entries is reached
    - None is never stored (no negative caching)
    - TTLs can be chosen per resource class
    """

    def __init__(
        self,
        *,
        default_ttl: float = 300.0,
        max_entries: int = 200,
        ttl_by_resource: Mapping[ResourceClass | str, float] | None = None,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self.enabled = enabled
        self._ttl_by_resource = {str(name): ttl for name, ttl in (ttl_by_resource or {}).items()}
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = Lock()
        self._epoch = 0
        self._invalidations: deque[tuple[int, str]] = deque(maxlen=_INVALIDATION_LOG_SIZE)
        self._hits = 0
        self._misses = 0

    def ttl_for(self, resource: ResourceClass | str) -> float:
        """TTL configured for a resource class, falling back to the default."""
        return self._ttl_by_resource.get(str(resource), self.default_ttl)

    def get(self, key: str) -> Any | None:
        """Get cached value; None if missing or expired."""
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def snapshot(self) -> int:
        """Current invalidation epoch, to pass to set(since=...)."""
        with self._lock:
            return self._epoch

    def set(self, key: str, value: Any, ttl: float | None = None, *, since: int | None = None) -> bool:
        """Store a value.

        Args:
            key: Cache key
            value: Value to store (None is ignored)
            ttl: Seconds to live, None = default_ttl
            since: Epoch from snapshot() taken before the value was fetched

        Returns:
            True if stored, False if skipped (disabled, None, or invalidated
            since the snapshot)
        """
        if not self.enabled or value is None:
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        with self._lock:
            if since is not None and self._invalidated_since(key, since):
                logger.debug("Dropped cache set after concurrent invalidation", key=key)
                return False
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[key] = CacheEntry(value=value, inserted_at=self._clock(), ttl=ttl)
            return True

    def _invalidated_since(self, key: str, since: int) -> bool:
        if since >= self._epoch:
            return False
        if not self._invalidations or self._invalidations[0][0] > since + 1:
            # log no longer reaches back to the snapshot
            return True
        return any(epoch > since and _matches(key, pattern) for epoch, pattern in self._invalidations)

    def invalidate(self, pattern: str) -> int:
        """Remove every entry whose key starts with (or globs to) pattern.

        Returns:
            Number of entries removed
        """
        if not pattern:
            raise ValueError("invalidation pattern must not be empty")
        with self._lock:
            self._epoch += 1
            self._invalidations.append((self._epoch, pattern))
            doomed = [key for key in self._entries if _matches(key, pattern)]
            for key in doomed:
                del self._entries[key]
        logger.debug("Cache invalidated", pattern=pattern, removed=len(doomed))
        return len(doomed)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cleanup_expired(self) -> int:
        """Remove expired entries; return count removed."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def status(self) -> dict[str, Any]:
        """Entry counts and hit statistics."""
        with self._lock:
            now = self._clock()
            valid = sum(1 for entry in self._entries.values() if not entry.is_expired(now))
            total_lookups = self._hits + self._misses
            return {
                "total": len(self._entries),
                "valid": valid,
                "expired": len(self._entries) - valid,
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total_lookups if total_lookups else 0.0,
                "enabled": self.enabled,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True, slots=True)
class RangeKeys:
    """Builds hierarchical cache keys for one spreadsheet."""

    spreadsheet_id: str
    namespace: str = "rowstore"

    @property
    def root(self) -> str:
        return f"{self.namespace}:{self.spreadsheet_id}:"

    def family(self, sheet: str) -> str:
        """Prefix shared by every key derived from a sheet."""
        return f"{self.root}{sheet}:"

    def key(self, sheet: str, resource: ResourceClass | str, detail: str | None = None) -> str:
        base = f"{self.family(sheet)}{resource}"
        return base if detail is None else f"{base}:{detail}"

    def metadata(self) -> str:
        # sheet titles cannot be empty, so this never collides with a family
        return f"{self.root}:{ResourceClass.METADATA}"
