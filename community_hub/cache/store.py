"""
Namespaced TTL cache store over a key/value medium.

The cache is an optimization, not a source of truth: no operation here
raises. Medium failures are logged and degrade to a miss or a no-op.
"""
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

from community_hub.errors import CacheError
from community_hub.result import Result

from .core import CacheEntry
from .medium import KeyValueMedium, MemoryMedium

logger = logging.getLogger("cache.store")

KEY_SEPARATOR = ":"


def matches_prefix(key: str, prefix: str) -> bool:
    """
    Segment-aware prefix match.

    "jobs" matches "jobs" and "jobs:..." but not "jobs_2:...". A prefix that
    already ends with the separator is matched literally.
    """
    if key == prefix:
        return True
    if prefix.endswith(KEY_SEPARATOR):
        return key.startswith(prefix)
    return key.startswith(prefix + KEY_SEPARATOR)


class TTLCacheStore:
    """
    Key/value cache with per-entry expiry, scoped to one namespace.

    Every medium key is written as "<namespace>:<key>", so stores with
    different namespaces can share one medium and clear() only touches its
    own entries. Expired entries are purged lazily on the next read.

    Usage:
        store = TTLCacheStore("app_cache")
        store.set("marketplace_listings:item:42", listing, ttl=300)
        listing = store.get("marketplace_listings:item:42")
    """

    def __init__(
        self,
        namespace: str = "app_cache",
        medium: Optional[KeyValueMedium] = None,
        clock: Callable[[], float] = time.time,
        default_ttl: float = 900,
    ):
        """
        Args:
            namespace: Prefix isolating this store inside the medium
            medium: Backing key/value medium (in-memory if omitted)
            clock: Returns current epoch seconds
            default_ttl: TTL used when set() is called without one
        """
        self.namespace = namespace
        self._medium = medium if medium is not None else MemoryMedium()
        self._clock = clock
        self.default_ttl = default_ttl
        self._stats = {
            "hits": 0,
            "misses": 0,
            "expired": 0,
            "errors": 0,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def now(self) -> float:
        return self._clock()

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value with stored_at = now, replacing any prior entry."""
        entry = CacheEntry(
            data=value,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        result = self._write(self._full_key(key), entry)
        if not result.ok:
            self._record_error("set", key, result.error)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        full_key = self._full_key(key)
        result = self._read(full_key)
        if not result.ok:
            self._record_error("get", key, result.error)
            self._stats["misses"] += 1
            return None

        entry = result.value
        if entry is None:
            logger.debug(f"CACHE MISS: {key}")
            self._stats["misses"] += 1
            return None

        if not entry.is_valid(self._clock()):
            logger.debug(f"CACHE EXPIRED: {key} [age={entry.age_seconds(self._clock()):.1f}s]")
            self._stats["expired"] += 1
            self._stats["misses"] += 1
            self._delete(full_key, "get")
            return None

        self._stats["hits"] += 1
        logger.debug(f"CACHE HIT: {key}")
        return entry.data

    def peek(self, key: str) -> Optional[CacheEntry]:
        """
        Return the raw entry, valid or expired, without purging it.

        Used by the refresher to decide on background refresh and to fall
        back to an expired value when the remote is unavailable.
        """
        result = self._read(self._full_key(key))
        if not result.ok:
            self._record_error("peek", key, result.error)
            return None
        return result.value

    def remove(self, key: str) -> None:
        """Delete one entry; no-op if absent."""
        self._delete(self._full_key(key), "remove")

    def remove_by_prefix(self, prefix: str) -> int:
        """
        Delete every entry whose key starts with the given prefix segment(s).

        Returns:
            Number of entries removed (0 when nothing matched)
        """
        full_prefix = self._full_key(prefix)
        removed = 0
        for full_key in self._keys():
            if matches_prefix(full_key, full_prefix) and self._delete(full_key, "remove_by_prefix"):
                removed += 1
        if removed:
            logger.info(f"Invalidated {removed} entries under '{prefix}'")
        return removed

    def clear(self) -> int:
        """Delete every entry in this store's namespace only."""
        own_prefix = self.namespace + KEY_SEPARATOR
        removed = 0
        for full_key in self._keys():
            if full_key.startswith(own_prefix) and self._delete(full_key, "clear"):
                removed += 1
        logger.info(f"Cleared {removed} cache entries in namespace '{self.namespace}'")
        return removed

    def keys(self) -> List[str]:
        """Logical keys currently held in this namespace (expired included)."""
        own_prefix = self.namespace + KEY_SEPARATOR
        return [k[len(own_prefix):] for k in self._keys() if k.startswith(own_prefix)]

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
        return {
            "namespace": self.namespace,
            "entries": len(self.keys()),
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
        }

    # ------------------------------------------------------------------
    # Medium access
    # ------------------------------------------------------------------

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}{KEY_SEPARATOR}{key}"

    def _read(self, full_key: str) -> Result[Optional[CacheEntry], CacheError]:
        try:
            raw = self._medium.get(full_key)
            if raw is None:
                return Result.success(None)
            return Result.success(CacheEntry.from_json(raw))
        except CacheError as e:
            return Result.failure(e)
        except (ValueError, KeyError, TypeError) as e:
            # Corrupt entry: drop it so the next read is a clean miss
            self._delete(full_key, "read")
            return Result.failure(CacheError(f"corrupt entry {full_key}: {e}"))
        except Exception as e:
            return Result.failure(CacheError(f"medium read failed for {full_key}: {e}"))

    def _write(self, full_key: str, entry: CacheEntry) -> Result[None, CacheError]:
        try:
            self._medium.set(full_key, entry.to_json())
            return Result.success()
        except CacheError as e:
            return Result.failure(e)
        except (TypeError, ValueError) as e:
            return Result.failure(CacheError(f"value for {full_key} is not serializable: {e}"))
        except Exception as e:
            # e.g. quota exceeded on the medium
            return Result.failure(CacheError(f"medium write failed for {full_key}: {e}"))

    def _delete(self, full_key: str, operation: str) -> bool:
        try:
            self._medium.delete(full_key)
            return True
        except Exception as e:
            self._record_error(operation, full_key, e)
            return False

    def _keys(self) -> Iterator[str]:
        try:
            return iter(self._medium.list_keys())
        except Exception as e:
            self._record_error("list_keys", self.namespace, e)
            return iter(())

    def _record_error(self, operation: str, key: str, error: Optional[Exception]) -> None:
        self._stats["errors"] += 1
        logger.warning(f"Cache {operation} failed for {key}: {error}")
