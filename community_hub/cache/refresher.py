"""
Read-through cache access with stale-while-revalidate.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from community_hub.errors import RemoteError
from community_hub.result import Result

from .coalescer import RequestCoalescer
from .core import CacheMeta, CacheSource, iso_timestamp
from .store import TTLCacheStore

logger = logging.getLogger("cache.refresher")

Loader = Callable[[], Awaitable[Any]]


class StaleWhileRevalidateRefresher:
    """
    Read-through orchestration over a TTLCacheStore with:
    - Instant answers from valid entries
    - Background refresh for entries near expiry
    - Request coalescing for concurrent loads of one key
    - Stale fallback when the remote fails

    Reads prefer availability over freshness: a loader failure is only
    raised when there is no cached value at all, expired or not.
    """

    def __init__(
        self,
        store: TTLCacheStore,
        refresh_window: float = 0.2,
        coalesce_timeout: float = 30.0,
    ):
        """
        Args:
            store: Cache store holding the entries
            refresh_window: Fraction of a TTL counted as near expiry
            coalesce_timeout: Timeout for waiting on coalesced requests
        """
        self.store = store
        self.refresh_window = refresh_window
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)
        self._background: Set["asyncio.Future[Any]"] = set()

        self._stats = {
            "hits_fresh": 0,
            "hits_revalidating": 0,
            "hits_stale": 0,
            "misses": 0,
            "revalidations": 0,
            "revalidation_failures": 0,
        }

    async def read(
        self,
        key: str,
        loader: Loader,
        ttl: Optional[float] = None,
        force_refresh: bool = False,
        allow_swr: bool = True,
        refresh_window: Optional[float] = None,
        collection: Optional[str] = None,
    ) -> Tuple[Any, CacheMeta]:
        """
        Get data from cache or load it from the remote source.

        Args:
            key: Cache key from the key policy
            loader: Coroutine function performing the remote fetch
            ttl: TTL for the stored result (store default if None)
            force_refresh: Bypass the cached value
            allow_swr: Trigger background refresh for entries near expiry
            refresh_window: Override of the near-expiry fraction
            collection: Collection name, reported in the metadata

        Returns:
            (data, cache_meta) tuple

        Raises:
            RemoteError: Loader failed and nothing is cached for the key
            TimeoutError: Coalesced wait timed out and nothing is cached
        """
        ttl = self.store.default_ttl if ttl is None else ttl
        window = self.refresh_window if refresh_window is None else refresh_window

        # Read before get(), which purges an expired entry
        fallback = self.store.peek(key)

        if not force_refresh and fallback is not None:
            data = self.store.get(key)
            if data is not None:
                now = self.store.now()
                age = fallback.age_seconds(now)
                if allow_swr and fallback.is_near_expiry(now, window):
                    logger.info(f"CACHE HIT (near expiry, revalidating): {key} [age={age:.1f}s]")
                    self.revalidate(key, loader, ttl)
                    self._stats["hits_revalidating"] += 1
                    return data, self._make_meta(CacheSource.REVALIDATING, collection, ttl, age)
                self._stats["hits_fresh"] += 1
                return data, self._make_meta(CacheSource.FRESH, collection, ttl, age)

        if force_refresh:
            logger.info(f"FORCE REFRESH: {key}")
        else:
            logger.info(f"CACHE MISS: {key}")

        self._stats["misses"] += 1
        result = await self._load(key, loader, ttl)
        if result.ok:
            return result.value, self._make_meta(CacheSource.UPSTREAM, collection, ttl, 0.0)

        if fallback is not None:
            logger.warning(f"Serving stale data for {key} after remote failure: {result.error}")
            self._stats["hits_stale"] += 1
            return fallback.data, self._make_meta(
                CacheSource.STALE, collection, ttl, fallback.age_seconds(self.store.now())
            )
        raise result.error

    def revalidate(self, key: str, loader: Loader, ttl: float) -> "asyncio.Future[Any]":
        """
        Refresh an entry in the background without the caller waiting.

        At most one refresh per key runs at a time; a call while one is
        outstanding returns the existing task.
        """
        if self._coalescer.is_in_flight(key):
            logger.debug(f"Already revalidating: {key}")
            return self._coalescer.start(key, self._fetch_and_store(key, loader, ttl))

        logger.debug(f"Background revalidation started: {key}")
        task = self._coalescer.start(key, self._fetch_and_store(key, loader, ttl))
        self._background.add(task)
        task.add_done_callback(lambda done, k=key: self._revalidation_done(k, done))
        return task

    async def drain(self) -> None:
        """Wait for every outstanding background refresh to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def invalidate(self, key: str) -> None:
        self.store.remove(key)

    def get_stats(self) -> Dict[str, Any]:
        """Get refresher statistics."""
        total_hits = (
            self._stats["hits_fresh"] + self._stats["hits_revalidating"] + self._stats["hits_stale"]
        )
        total_requests = self._stats["hits_fresh"] + self._stats["hits_revalidating"] + self._stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0
        return {
            **self._stats,
            "hit_rate_percent": round(hit_rate, 1),
            "coalescer": self._coalescer.get_stats(),
            "revalidating_count": len(self._background),
        }

    # ------------------------------------------------------------------

    def _fetch_and_store(self, key: str, loader: Loader, ttl: float) -> Loader:
        async def fetch():
            data = await loader()
            if data is not None:
                self.store.set(key, data, ttl)
            return data
        return fetch

    async def _load(self, key: str, loader: Loader, ttl: float) -> Result[Any, Exception]:
        try:
            data = await self._coalescer.get_or_fetch(key, self._fetch_and_store(key, loader, ttl))
            return Result.success(data)
        except (RemoteError, TimeoutError) as e:
            return Result.failure(e)

    def _revalidation_done(self, key: str, task: "asyncio.Future[Any]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            self._stats["revalidation_failures"] += 1
            logger.warning(f"Background revalidation failed: {key} - {task.exception()}")
        else:
            self._stats["revalidations"] += 1
            logger.debug(f"Background revalidation complete: {key}")

    def _make_meta(
        self,
        source: CacheSource,
        collection: Optional[str],
        ttl: float,
        age: float,
    ) -> CacheMeta:
        """Create cache metadata for response."""
        return CacheMeta(
            last_updated=iso_timestamp(self.store.now()),
            cache_source=source.value,
            collection=collection,
            ttl_seconds=ttl,
            age_seconds=age,
        )
