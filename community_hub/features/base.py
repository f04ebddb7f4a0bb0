"""
Generic collection feature.

Wires one collection's cache reads, optimistic writes and realtime
subscription together. Concrete features only add domain vocabulary on top
(listings, posts, messages).
"""
import asyncio
import contextlib
import logging
from typing import Any, Dict, List, Optional, Tuple

from community_hub.cache import (
    CacheMeta,
    StaleWhileRevalidateRefresher,
    TTLCacheStore,
    get_ttl_for_collection,
    key_for,
)
from community_hub.errors import NotFoundError
from community_hub.remote.base import RemoteDataSource
from community_hub.sync import CollectionView, OptimisticCoordinator, RealtimeReconciler


class CollectionFeature:
    """
    One collection as the app sees it.

    The CollectionView mirrors the most recent list read plus every pending
    optimistic change and every realtime event since. Reads go through the
    shared refresher; writes go through the coordinator; the reconciler
    folds in the subscription stream.

    Subclasses set:
        collection: Remote collection name (also the cache key namespace)
        order: Remote ordering for list reads
        insert_at_front: Where new rows appear in the view
    """

    collection: str = ""
    order: Optional[str] = "created_at.desc"
    insert_at_front: bool = True

    def __init__(
        self,
        store: TTLCacheStore,
        remote: RemoteDataSource,
        refresher: Optional[StaleWhileRevalidateRefresher] = None,
        ttl_overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            store: Cache store shared by all features
            remote: Remote data source
            refresher: Shared refresher (a private one is built if omitted)
            ttl_overrides: Per-feature "ttl", "refresh_window", "allow_swr"
        """
        if not self.collection:
            raise ValueError(f"{type(self).__name__} must set a collection name")

        self.store = store
        self.remote = remote
        self.refresher = refresher or StaleWhileRevalidateRefresher(store)
        self.ttl, self.refresh_window, self.allow_swr = get_ttl_for_collection(
            self.collection, ttl_overrides
        )

        self.view = CollectionView(self.collection)
        self.coordinator = OptimisticCoordinator(
            self.collection,
            self.view,
            store,
            remote,
            insert_at_front=self.insert_at_front,
        )
        self.reconciler = RealtimeReconciler(self.view, self.coordinator, store)

        self._realtime_task: Optional["asyncio.Task[None]"] = None
        self._realtime_filters: Optional[Dict[str, Any]] = None
        self._log = logging.getLogger(f"features.{self.collection}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list(
        self,
        filters: Optional[Dict[str, Any]] = None,
        force_refresh: bool = False,
    ) -> Tuple[List[Dict[str, Any]], CacheMeta]:
        """
        Read a filtered list through the cache and load it into the view.

        Returns:
            (rows, cache_meta); rows include pending optimistic changes
        """
        filters = {k: v for k, v in (filters or {}).items() if v is not None}

        async def loader():
            return await self.remote.list(self.collection, filters or None, self.order)

        rows, meta = await self._read(key_for(self.collection, filters), loader, force_refresh)
        self.coordinator.load(rows or [])
        return self.view.snapshot(), meta

    async def get(
        self,
        entity_id: Any,
        force_refresh: bool = False,
    ) -> Tuple[Dict[str, Any], CacheMeta]:
        """
        Read one entity through the cache.

        A pending optimistic change to the entity wins over the cached row.

        Raises:
            NotFoundError: The entity does not exist remotely
        """
        entity_id = str(entity_id)

        async def loader():
            return await self.remote.get_by_id(self.collection, entity_id)

        row, meta = await self._read(key_for(self.collection, entity_id), loader, force_refresh)
        if self.coordinator.has_pending(entity_id):
            row = self.view.get(entity_id) or row
        if row is None:
            raise NotFoundError(f"{self.collection}/{entity_id} not found")
        return row, meta

    def snapshot(self) -> List[Dict[str, Any]]:
        """Current view rows without touching the cache or the remote."""
        return self.view.snapshot()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.coordinator.create(payload)

    async def update(self, entity_id: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self._ensure_in_view(entity_id)
        row = await self.coordinator.update(entity_id, patch)
        if row is None:
            row, _ = await self.get(entity_id, force_refresh=True)
        return row

    async def toggle(
        self,
        entity_id: Any,
        field: str,
        counter_field: Optional[str] = None,
    ) -> Dict[str, Any]:
        await self._ensure_in_view(entity_id)
        row = await self.coordinator.toggle(entity_id, field, counter_field=counter_field)
        if row is None:
            raise NotFoundError(f"{self.collection}/{entity_id} not found")
        return row

    async def delete(self, entity_id: Any) -> None:
        await self.coordinator.delete(entity_id)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start_realtime(self, filters: Optional[Dict[str, Any]] = None) -> None:
        """
        Subscribe to changes of the collection (restarting any running
        subscription) and fold them into the view in a background task.
        """
        await self.stop_realtime()
        self._realtime_filters = filters
        stream = self.remote.subscribe(self.collection, filters)
        self._realtime_task = asyncio.create_task(self.reconciler.consume(stream))
        # Let the consumer reach its first await so cancellation runs cleanup
        await asyncio.sleep(0)
        self._log.info(f"Realtime started for {self.collection} (filters={filters})")

    async def stop_realtime(self) -> None:
        task, self._realtime_task = self._realtime_task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        self._log.info(f"Realtime stopped for {self.collection}")

    @property
    def realtime_active(self) -> bool:
        return self._realtime_task is not None and not self._realtime_task.done()

    def get_stats(self) -> Dict[str, Any]:
        """Get feature statistics."""
        return {
            "collection": self.collection,
            "rows": len(self.view),
            "ttl": self.ttl,
            "allow_swr": self.allow_swr,
            "realtime_active": self.realtime_active,
            "realtime_filters": self._realtime_filters,
            "coordinator": self.coordinator.get_stats(),
            "reconciler": self.reconciler.get_stats(),
        }

    # ------------------------------------------------------------------

    async def _read(self, key: str, loader, force_refresh: bool) -> Tuple[Any, CacheMeta]:
        return await self.refresher.read(
            key,
            loader,
            ttl=self.ttl,
            force_refresh=force_refresh,
            allow_swr=self.allow_swr,
            refresh_window=self.refresh_window,
            collection=self.collection,
        )

    async def _ensure_in_view(self, entity_id: Any) -> None:
        entity_id = str(entity_id)
        if entity_id in self.view:
            return
        row, _ = await self.get(entity_id)
        if self.coordinator.adopt(row):
            self._log.debug(f"Adopted {entity_id} into {self.collection} view")
